"""CMMS Core FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_settings
from ..database import engine
from ..errors import WorkOrderError
from ..models import Base
from .routers import work_orders, executions, scheduling, generation, metrics

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("cmms-core")

logger.info("Starting CMMS Core API")

if settings.create_tables:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

# Create FastAPI app
app = FastAPI(
    title="CMMS Core API",
    description="Work order lifecycle engine for maintenance management",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkOrderError)
async def work_order_error_handler(request: Request, exc: WorkOrderError):
    """Map domain errors to their HTTP status and a JSON body with the error code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(NotImplementedError)
async def not_implemented_handler(request: Request, exc: NotImplementedError):
    return JSONResponse(
        status_code=501,
        content={"error": "not_implemented", "detail": str(exc) or "Not implemented"},
    )


# Include all business logic routers with /api/v1 prefix
app.include_router(work_orders.router, prefix="/api/v1/work-orders")
app.include_router(executions.router, prefix="/api/v1/executions")
app.include_router(scheduling.router, prefix="/api/v1/scheduling")
app.include_router(generation.router, prefix="/api/v1/generation")
app.include_router(metrics.router, prefix="/api/v1/metrics")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "CMMS Core API",
        "version": __version__,
        "docs": "/docs",
        "description": "Work order lifecycle engine for maintenance management",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
