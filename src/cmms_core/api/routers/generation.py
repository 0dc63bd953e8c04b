"""Preventive work order generation endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ... import models, schemas
from ...errors import NotFoundError
from ...services import WorkOrderGenerationService, WorkOrderService
from ..dependencies import get_actor_id, get_work_order_service

logger = logging.getLogger("cmms-core.api.generation")

router = APIRouter(tags=["generation"])


def get_generation_service(
    service: WorkOrderService = Depends(get_work_order_service),
) -> WorkOrderGenerationService:
    return WorkOrderGenerationService(service)


@router.post("/run", response_model=schemas.GenerationResultResponse)
def run_generation(
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderGenerationService = Depends(get_generation_service),
):
    """Generate orders for every due automatic routine."""
    result = service.generate_due_work_orders(actor_id=actor_id)
    return {"generated": result.generated, "skipped": result.skipped, "failures": result.failures}


@router.post(
    "/routines/{routine_id}",
    response_model=schemas.WorkOrderResponse,
    status_code=201,
)
def generate_for_routine(
    routine_id: int,
    payload: Optional[schemas.GenerateForRoutineRequest] = None,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderGenerationService = Depends(get_generation_service),
):
    """Generate an order for one routine; a due date forces generation."""
    routine = service.db.get(models.Routine, routine_id)
    if routine is None:
        raise NotFoundError("Routine", routine_id)
    return service.generate_for_routine(routine, due_date=payload.due_date if payload else None, actor_id=actor_id)


@router.get("/preview", response_model=list[schemas.UpcomingWorkOrder])
def preview_upcoming(
    days_ahead: int = Query(30, ge=1, le=365),
    service: WorkOrderGenerationService = Depends(get_generation_service),
):
    return service.preview_upcoming_work_orders(days_ahead=days_ahead)
