"""Scheduling endpoints: calendar, availability, workload, batch and optimizer."""
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends

from ... import models, schemas
from ...errors import NotFoundError
from ...services import WorkOrderSchedulingService, WorkOrderService
from ..dependencies import get_actor_id, get_work_order_service

logger = logging.getLogger("cmms-core.api.scheduling")

router = APIRouter(tags=["scheduling"])


def get_scheduling_service(
    service: WorkOrderService = Depends(get_work_order_service),
) -> WorkOrderSchedulingService:
    return WorkOrderSchedulingService(service)


@router.get("/calendar", response_model=dict[str, list[schemas.WorkOrderListItem]])
def get_calendar(
    start_date: datetime,
    end_date: datetime,
    technician_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    status: Optional[models.WorkOrderStatus] = None,
    service: WorkOrderSchedulingService = Depends(get_scheduling_service),
):
    """Scheduled work grouped by day (YYYY-MM-DD)."""
    return service.get_scheduling_calendar(
        start_date, end_date, technician_id=technician_id, asset_id=asset_id, status=status
    )


@router.get("/availability/{technician_id}", response_model=schemas.AvailabilityResponse)
def check_availability(
    technician_id: int,
    start_date: datetime,
    end_date: datetime,
    exclude_work_order_id: Optional[int] = None,
    service: WorkOrderSchedulingService = Depends(get_scheduling_service),
):
    availability = service.check_technician_availability(
        technician_id, start_date, end_date, exclude_work_order_id=exclude_work_order_id
    )
    return {"technician_id": technician_id, **availability}


@router.get("/workload/{technician_id}")
def get_workload(
    technician_id: int,
    start_date: datetime,
    end_date: datetime,
    service: WorkOrderSchedulingService = Depends(get_scheduling_service),
) -> dict[str, Any]:
    return service.get_technician_workload(technician_id, start_date, end_date)


@router.post("/batch", response_model=list[schemas.ScheduleBatchResult])
def schedule_batch(
    payload: schemas.ScheduleBatchRequest,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderSchedulingService = Depends(get_scheduling_service),
):
    """Schedule several orders at once; each entry reports its own outcome."""
    return service.schedule_batch([entry.model_dump() for entry in payload.entries], actor_id)


@router.post("/optimize", response_model=schemas.OptimizeScheduleResponse)
def optimize_schedule(
    payload: schemas.OptimizeScheduleRequest,
    service: WorkOrderSchedulingService = Depends(get_scheduling_service),
):
    """Propose technician slots for the given orders without persisting anything."""
    work_orders = (
        service.db.query(models.WorkOrder)
        .filter(models.WorkOrder.id.in_(payload.work_order_ids))
        .all()
    )
    missing = set(payload.work_order_ids) - {wo.id for wo in work_orders}
    if missing:
        raise NotFoundError("Work order", min(missing))

    return service.optimize_schedule(work_orders, payload.technician_ids, payload.start_date, payload.end_date)
