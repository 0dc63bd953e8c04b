"""Work order execution endpoints (technician side)."""
import logging

from fastapi import APIRouter, Depends, status

from ... import schemas
from ...services import WorkOrderExecutionService, WorkOrderService
from ..dependencies import get_actor_id, get_work_order_service

logger = logging.getLogger("cmms-core.api.executions")

router = APIRouter(tags=["executions"])


def get_execution_service(
    service: WorkOrderService = Depends(get_work_order_service),
) -> WorkOrderExecutionService:
    return WorkOrderExecutionService(service)


@router.post("/", response_model=schemas.ExecutionResponse, status_code=status.HTTP_201_CREATED)
def start_execution(
    payload: schemas.ExecutionStart,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderExecutionService = Depends(get_execution_service),
):
    """Start (or restart) execution of a scheduled work order."""
    work_order = service.work_orders.get_work_order(payload.work_order_id)
    return service.start_execution(work_order, payload.technician_id or actor_id)


@router.get("/{execution_id}", response_model=schemas.ExecutionResponse)
def get_execution(execution_id: int, service: WorkOrderExecutionService = Depends(get_execution_service)):
    return service.get_execution(execution_id)


@router.get("/{execution_id}/stats", response_model=schemas.ExecutionStats)
def get_execution_stats(execution_id: int, service: WorkOrderExecutionService = Depends(get_execution_service)):
    return service.get_execution_stats(service.get_execution(execution_id))


@router.post("/{execution_id}/pause", response_model=schemas.ExecutionResponse)
def pause_execution(
    execution_id: int,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderExecutionService = Depends(get_execution_service),
):
    return service.pause_execution(service.get_execution(execution_id), actor_id)


@router.post("/{execution_id}/resume", response_model=schemas.ExecutionResponse)
def resume_execution(
    execution_id: int,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderExecutionService = Depends(get_execution_service),
):
    return service.resume_execution(service.get_execution(execution_id), actor_id)


@router.post("/{execution_id}/tasks", response_model=schemas.TaskResponseResponse)
def submit_task_response(
    execution_id: int,
    payload: schemas.TaskResponseSubmit,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderExecutionService = Depends(get_execution_service),
):
    """Answer a checklist task; answering again overwrites the previous response."""
    execution = service.get_execution(execution_id)
    return service.submit_task_response(
        execution, payload.task_id, payload.response, actor_id, response_data=payload.response_data
    )


@router.post("/{execution_id}/complete", response_model=schemas.ExecutionResponse)
def complete_execution(
    execution_id: int,
    payload: schemas.ExecutionComplete,
    actor_id: int = Depends(get_actor_id),
    service: WorkOrderExecutionService = Depends(get_execution_service),
):
    """
    Complete the execution and its work order.

    Fails with 409 ``incomplete_tasks`` while required checklist tasks are
    unanswered.
    """
    execution = service.get_execution(execution_id)
    return service.complete_execution(execution, payload.model_dump(), actor_id)
