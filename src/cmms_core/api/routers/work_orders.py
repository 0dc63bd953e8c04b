"""Work Orders API router.

Lifecycle: requested -> approved -> planned -> scheduled -> in_progress
-> completed -> verified -> closed (plus on_hold, rejected, cancelled)

Domain errors raised by the services are turned into JSON responses by the
application-level WorkOrderError handler.
"""
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...models import WorkOrderStatus
from ...schemas import (
    WorkOrderCreate,
    WorkOrderUpdate,
    WorkOrderTransition,
    ReasonRequest,
    WorkOrderResume,
    WorkOrderPlan,
    WorkOrderSchedule,
    WorkOrderResponse,
    WorkOrderListResponse,
    StatusHistoryResponse,
    WorkOrderStatistics,
)
from ...services import WorkOrderService
from ...state_machine import get_allowed_transitions
from ..dependencies import get_actor_id, get_work_order_service

logger = logging.getLogger("cmms-core.api.work_orders")

router = APIRouter(tags=["work-orders"])


@router.post("/", response_model=WorkOrderResponse, status_code=status.HTTP_201_CREATED)
def create_work_order(
    payload: WorkOrderCreate,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    """Create a work order in requested status."""
    data = payload.model_dump(exclude_none=True)
    discipline = data.pop("discipline")
    return service.get_discipline_service(discipline).create(data, actor_id)


@router.get("/", response_model=WorkOrderListResponse)
def list_work_orders(
    status_filter: Optional[WorkOrderStatus] = Query(None, alias="status"),
    discipline: Optional[str] = None,
    asset_id: Optional[int] = None,
    technician_id: Optional[int] = None,
    category_id: Optional[int] = None,
    priority: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    service: WorkOrderService = Depends(get_work_order_service),
):
    """List work orders, active work first."""
    items, total = service.list_work_orders(
        status=status_filter,
        discipline=discipline,
        asset_id=asset_id,
        technician_id=technician_id,
        category_id=category_id,
        priority=priority,
        skip=(page - 1) * page_size,
        limit=page_size,
    )
    return WorkOrderListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/{work_order_id}", response_model=WorkOrderResponse)
def get_work_order(work_order_id: int, service: WorkOrderService = Depends(get_work_order_service)):
    return service.get_work_order(work_order_id)


@router.patch("/{work_order_id}", response_model=WorkOrderResponse)
def update_work_order(
    work_order_id: int,
    payload: WorkOrderUpdate,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.update(work_order, payload.model_dump(exclude_unset=True), actor_id)


@router.post("/{work_order_id}/transition", response_model=WorkOrderResponse)
def transition_work_order(
    work_order_id: int,
    payload: WorkOrderTransition,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    """Apply any transition allowed from the current status."""
    work_order = service.get_work_order(work_order_id)
    return service.transition_to(
        work_order, payload.new_status, actor_id, reason=payload.reason, metadata=payload.metadata
    )


@router.post("/{work_order_id}/approve", response_model=WorkOrderResponse)
def approve_work_order(
    work_order_id: int,
    payload: Optional[ReasonRequest] = None,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.approve(work_order, actor_id, reason=payload.reason if payload else None)


@router.post("/{work_order_id}/reject", response_model=WorkOrderResponse)
def reject_work_order(
    work_order_id: int,
    payload: ReasonRequest,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.reject(work_order, actor_id, payload.reason)


@router.post("/{work_order_id}/plan", response_model=WorkOrderResponse)
def plan_work_order(
    work_order_id: int,
    payload: WorkOrderPlan,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    """Record estimates and move to planned (total cost = parts + labor)."""
    work_order = service.get_work_order(work_order_id)
    return service.plan(work_order, actor_id, payload.model_dump(exclude_unset=True))


@router.post("/{work_order_id}/schedule", response_model=WorkOrderResponse)
def schedule_work_order(
    work_order_id: int,
    payload: WorkOrderSchedule,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.schedule(work_order, actor_id, payload.model_dump())


@router.post("/{work_order_id}/hold", response_model=WorkOrderResponse)
def put_work_order_on_hold(
    work_order_id: int,
    payload: ReasonRequest,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.put_on_hold(work_order, actor_id, payload.reason)


@router.post("/{work_order_id}/resume", response_model=WorkOrderResponse)
def resume_work_order(
    work_order_id: int,
    payload: WorkOrderResume,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.resume(work_order, actor_id, payload.to_status, reason=payload.reason)


@router.post("/{work_order_id}/verify", response_model=WorkOrderResponse)
def verify_work_order(
    work_order_id: int,
    payload: Optional[ReasonRequest] = None,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.verify(work_order, actor_id, notes=payload.reason if payload else None)


@router.post("/{work_order_id}/close", response_model=WorkOrderResponse)
def close_work_order(
    work_order_id: int,
    payload: Optional[ReasonRequest] = None,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.close(work_order, actor_id, notes=payload.reason if payload else None)


@router.post("/{work_order_id}/cancel", response_model=WorkOrderResponse)
def cancel_work_order(
    work_order_id: int,
    payload: ReasonRequest,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.cancel(work_order, actor_id, payload.reason)


@router.get("/{work_order_id}/history", response_model=list[StatusHistoryResponse])
def get_work_order_history(
    work_order_id: int,
    service: WorkOrderService = Depends(get_work_order_service),
):
    """Status history, oldest first."""
    work_order = service.get_work_order(work_order_id)
    return service.get_status_history(work_order)


@router.get("/{work_order_id}/transitions", response_model=list[str])
def get_work_order_transitions(
    work_order_id: int,
    service: WorkOrderService = Depends(get_work_order_service),
):
    """Statuses reachable from the current one in a single transition."""
    work_order = service.get_work_order(work_order_id)
    return [s.value for s in get_allowed_transitions(work_order.status)]


@router.get("/{work_order_id}/statistics", response_model=WorkOrderStatistics)
def get_work_order_statistics(
    work_order_id: int,
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    return service.get_statistics(work_order)


@router.post("/{work_order_id}/priority-score", response_model=WorkOrderResponse)
def recalculate_priority_score(
    work_order_id: int,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderService = Depends(get_work_order_service),
):
    work_order = service.get_work_order(work_order_id)
    score = service.update_priority_score(work_order)
    logger.info(f"User {actor_id} recalculated priority of work order {work_order_id}: {score}")
    return service.get_work_order(work_order_id)
