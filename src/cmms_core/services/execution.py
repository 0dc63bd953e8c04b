"""Execution sub-lifecycle of work orders.

assigned -> in_progress <-> paused -> completed

Starting an execution moves a scheduled order to in_progress; completing it
moves the order to completed and may spawn a corrective follow-up order.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from .. import models
from ..database import atomic
from ..errors import (
    ConfigurationFault,
    IncompleteTasksError,
    InvalidTransitionError,
    NotFoundError,
)
from ..state_machine import validate_execution_transition
from .work_orders import WorkOrderService

logger = logging.getLogger("cmms-core.execution")

EXECUTABLE_STATUSES = (models.WorkOrderStatus.SCHEDULED, models.WorkOrderStatus.IN_PROGRESS)

COMPLETION_FLAGS = (
    "safety_checks_completed",
    "quality_checks_completed",
    "area_cleaned",
    "tools_returned",
    "follow_up_required",
)
COMPLETION_TEXT_FIELDS = ("work_performed", "observations", "recommendations")


class WorkOrderExecutionService:
    """Runs the hands-on part of a work order: start, pause, resume, tasks, completion."""

    def __init__(self, work_orders: WorkOrderService):
        self.work_orders = work_orders
        self.db = work_orders.db

    def get_execution(self, execution_id: int) -> models.WorkOrderExecution:
        execution = self.db.get(models.WorkOrderExecution, execution_id)
        if execution is None:
            raise NotFoundError("Work order execution", execution_id)
        return execution

    def start_execution(
        self,
        work_order: models.WorkOrder,
        technician_id: int,
        now: Optional[datetime] = None,
    ) -> models.WorkOrderExecution:
        """
        Start executing a work order.

        Creates the execution record when absent (status ``assigned``), starts
        it, and moves a ``scheduled`` order to ``in_progress``.

        Raises:
            InvalidTransitionError: If the order is not scheduled/in progress
                or the execution has already been started
        """
        if now is None:
            now = datetime.utcnow()

        with atomic(self.db, "start execution"):
            work_order = self.work_orders.lock_work_order(work_order.id)
            if work_order.status not in EXECUTABLE_STATUSES:
                raise InvalidTransitionError(
                    f"Work order {work_order.work_order_number} must be scheduled before execution "
                    f"can start (status: {work_order.status.value})",
                    current_status=work_order.status,
                    requested_status=models.WorkOrderStatus.IN_PROGRESS,
                )

            execution = work_order.execution
            if execution is None:
                execution = models.WorkOrderExecution(
                    work_order=work_order,
                    executed_by=technician_id,
                    status=models.ExecutionStatus.ASSIGNED,
                    total_pause_minutes=0.0,
                )
                self.db.add(execution)
            elif execution.status != models.ExecutionStatus.ASSIGNED:
                # A paused execution continues through resume_execution
                raise InvalidTransitionError(
                    f"Execution {execution.id} has already been started (status: {execution.status.value})",
                    current_status=execution.status,
                    requested_status=models.ExecutionStatus.IN_PROGRESS,
                    allowed_transitions=[],
                )

            validate_execution_transition(execution.status, models.ExecutionStatus.IN_PROGRESS, "start")
            execution.status = models.ExecutionStatus.IN_PROGRESS
            execution.started_at = now
            self.db.flush()

            if work_order.status == models.WorkOrderStatus.SCHEDULED:
                self.work_orders.transition_to(
                    work_order,
                    models.WorkOrderStatus.IN_PROGRESS,
                    technician_id,
                    reason="Execution started",
                    metadata={"execution_id": execution.id},
                )

        logger.info(
            f"Execution {execution.id} of work order {work_order.id} started by technician {technician_id}"
        )
        return execution

    def pause_execution(
        self,
        execution: models.WorkOrderExecution,
        actor_id: int,
        now: Optional[datetime] = None,
    ) -> models.WorkOrderExecution:
        if now is None:
            now = datetime.utcnow()

        with atomic(self.db, "pause execution"):
            validate_execution_transition(execution.status, models.ExecutionStatus.PAUSED, "pause")
            execution.status = models.ExecutionStatus.PAUSED
            execution.paused_at = now

        logger.info(f"Execution {execution.id} paused at {now.isoformat()} by user {actor_id}")
        return execution

    def resume_execution(
        self,
        execution: models.WorkOrderExecution,
        actor_id: int,
        now: Optional[datetime] = None,
    ) -> models.WorkOrderExecution:
        """Resume a paused execution, adding the pause to ``total_pause_minutes``."""
        if now is None:
            now = datetime.utcnow()

        with atomic(self.db, "resume execution"):
            validate_execution_transition(execution.status, models.ExecutionStatus.IN_PROGRESS, "resume")
            if execution.paused_at is not None:
                paused_minutes = max(0.0, (now - execution.paused_at).total_seconds() / 60)
                execution.total_pause_minutes = (execution.total_pause_minutes or 0.0) + paused_minutes
            execution.status = models.ExecutionStatus.IN_PROGRESS
            execution.resumed_at = now

        logger.info(f"Execution {execution.id} resumed at {now.isoformat()} by user {actor_id}")
        return execution

    def submit_task_response(
        self,
        execution: models.WorkOrderExecution,
        task_id: int,
        response: Optional[str],
        actor_id: int,
        response_data: Optional[dict[str, Any]] = None,
    ) -> models.TaskResponse:
        """
        Record the answer to one checklist task.

        Upserts on (execution, task): submitting again overwrites the
        previous answer instead of adding a second row.

        Raises:
            NotFoundError: If the task is not part of the order's checklist
            InvalidTransitionError: If the execution is already completed
        """
        if execution.status == models.ExecutionStatus.COMPLETED:
            raise InvalidTransitionError(
                f"Execution {execution.id} is completed; task responses can no longer change",
                current_status=execution.status,
            )

        task = self.db.get(models.FormTask, task_id)
        form_version_id = execution.work_order.form_version_id
        if task is None or form_version_id is None or task.form_version_id != form_version_id:
            raise NotFoundError("Form task", task_id)

        with atomic(self.db, "submit task response"):
            task_response = (
                self.db.query(models.TaskResponse)
                .filter(
                    models.TaskResponse.work_order_execution_id == execution.id,
                    models.TaskResponse.form_task_id == task_id,
                )
                .one_or_none()
            )
            if task_response is None:
                task_response = models.TaskResponse(
                    execution=execution,
                    form_task_id=task_id,
                )
                self.db.add(task_response)

            task_response.user_id = actor_id
            task_response.response = response
            task_response.response_data = response_data
            task_response.updated_at = datetime.utcnow()
            self.db.flush()

        logger.info(f"Task {task_id} response submitted for execution {execution.id} by user {actor_id}")
        return task_response

    def complete_execution(
        self,
        execution: models.WorkOrderExecution,
        completion_data: dict[str, Any],
        actor_id: int,
        now: Optional[datetime] = None,
    ) -> models.WorkOrderExecution:
        """
        Complete an execution and its work order.

        All required checklist tasks must be answered. Completion records the
        checklist flags and notes, stamps the order's actual end and hours,
        and moves an in_progress order to completed. When
        ``follow_up_required`` is set and ``follow_up_description`` given, a
        corrective follow-up order is created in the same transaction.

        Raises:
            IncompleteTasksError: If required tasks are unanswered
            InvalidTransitionError: If the execution is not in progress
        """
        if now is None:
            now = datetime.utcnow()

        missing = execution.missing_required_task_ids()
        if missing:
            raise IncompleteTasksError(
                f"Not all required tasks have been completed ({len(missing)} missing)",
                missing_task_ids=missing,
            )

        with atomic(self.db, "complete execution"):
            validate_execution_transition(execution.status, models.ExecutionStatus.COMPLETED, "complete")
            work_order = self.work_orders.lock_work_order(execution.work_order_id)

            for field in COMPLETION_TEXT_FIELDS:
                setattr(execution, field, completion_data.get(field))
            for field in COMPLETION_FLAGS:
                setattr(execution, field, bool(completion_data.get(field, False)))
            execution.status = models.ExecutionStatus.COMPLETED
            execution.completed_at = now

            duration = execution.actual_duration_minutes(now) or 0.0
            work_order.actual_end_date = now
            work_order.actual_hours = round(duration / 60, 2)

            if work_order.status == models.WorkOrderStatus.IN_PROGRESS:
                self.work_orders.transition_to(
                    work_order,
                    models.WorkOrderStatus.COMPLETED,
                    actor_id,
                    reason="Execution completed",
                    metadata={"execution_id": execution.id},
                )

            follow_up = None
            follow_up_description = completion_data.get("follow_up_description")
            if execution.follow_up_required and follow_up_description:
                follow_up = self._create_follow_up_work_order(work_order, follow_up_description, actor_id)

        logger.info(
            f"Execution {execution.id} of work order {execution.work_order_id} completed "
            f"(follow_up={follow_up.work_order_number if follow_up else None})"
        )
        return execution

    def _create_follow_up_work_order(
        self,
        original: models.WorkOrder,
        description: str,
        actor_id: int,
    ) -> models.WorkOrder:
        category = (
            self.db.query(models.WorkOrderCategory)
            .filter(
                models.WorkOrderCategory.code == models.CategoryCode.CORRECTIVE,
                models.WorkOrderCategory.discipline == original.discipline,
            )
            .first()
        )
        if category is None:
            raise ConfigurationFault(f"No corrective category found for {original.discipline}")

        # Keep the original type when the corrective category owns it
        type_id = original.work_order_type_id
        if original.type is None or original.type.work_order_category_id != category.id:
            corrective_type = (
                self.db.query(models.WorkOrderType)
                .filter(
                    models.WorkOrderType.work_order_category_id == category.id,
                    models.WorkOrderType.is_active.is_(True),
                )
                .order_by(models.WorkOrderType.id)
                .first()
            )
            type_id = corrective_type.id if corrective_type else None

        follow_up = self.work_orders.get_discipline_service(original.discipline).create(
            {
                "title": f"Follow-up: {original.title}",
                "description": description,
                "work_order_category_id": category.id,
                "work_order_type_id": type_id,
                "priority": "normal",
                "asset_id": original.asset_id,
                "source_type": models.SourceType.WORK_ORDER,
                "source_id": original.id,
                "related_work_order_id": original.id,
                "relationship_type": models.RelationshipType.FOLLOW_UP,
            },
            actor_id,
        )
        logger.info(
            f"Follow-up work order {follow_up.work_order_number} created from {original.work_order_number}"
        )
        return follow_up

    def get_follow_up_work_orders(self, work_order: models.WorkOrder) -> list[models.WorkOrder]:
        return (
            self.db.query(models.WorkOrder)
            .filter(
                models.WorkOrder.related_work_order_id == work_order.id,
                models.WorkOrder.relationship_type == models.RelationshipType.FOLLOW_UP,
            )
            .order_by(models.WorkOrder.id)
            .all()
        )

    def get_execution_stats(self, execution: models.WorkOrderExecution, now: Optional[datetime] = None) -> dict[str, Any]:
        tasks = execution.work_order.get_tasks()
        answered = execution.answered_task_ids()
        required_ids = [task.id for task in tasks if task.is_required]

        return {
            "total_tasks": len(tasks),
            "completed_tasks": len(answered),
            "required_tasks": len(required_ids),
            "completed_required_tasks": sum(1 for task_id in required_ids if task_id in answered),
            "completion_percentage": execution.completion_percentage,
            "actual_duration": execution.actual_duration_minutes(now),
            "status": execution.status.value,
        }
