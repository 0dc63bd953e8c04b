"""Read-only work order metrics endpoints.

Windows default to the last 30 days.
"""
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...services import WorkOrderMetricsService

router = APIRouter(tags=["metrics"])


def get_metrics_service(db: Session = Depends(get_db)) -> WorkOrderMetricsService:
    return WorkOrderMetricsService(db)


def _window(start_date: Optional[datetime], end_date: Optional[datetime]) -> tuple[datetime, datetime]:
    end = end_date or datetime.utcnow()
    start = start_date or end - timedelta(days=30)
    return start, end


@router.get("/overview")
def get_overview(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: WorkOrderMetricsService = Depends(get_metrics_service),
) -> dict[str, Any]:
    return service.get_overview_metrics(*_window(start_date, end_date))


@router.get("/performance")
def get_performance(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: WorkOrderMetricsService = Depends(get_metrics_service),
) -> dict[str, Any]:
    """MTBF, MTTR, PM compliance, emergency response, first-time fix and backlog."""
    return service.get_performance_metrics(*_window(start_date, end_date))


@router.get("/technicians/{technician_id}")
def get_technician_metrics(
    technician_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: WorkOrderMetricsService = Depends(get_metrics_service),
) -> dict[str, Any]:
    return service.get_technician_metrics(technician_id, *_window(start_date, end_date))


@router.get("/assets/{asset_id}")
def get_asset_metrics(
    asset_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: WorkOrderMetricsService = Depends(get_metrics_service),
) -> dict[str, Any]:
    return service.get_asset_metrics(asset_id, *_window(start_date, end_date))
