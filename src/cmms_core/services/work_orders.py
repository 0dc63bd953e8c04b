"""Work order lifecycle orchestration.

WorkOrderService wraps the state machine with the domain rules: discipline
validation on create/update, planning cost rollup, scheduling fields, and the
status history that every transition appends. Every mutation runs inside
``database.atomic`` so the order row and its history row persist together.
"""
import logging
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import case
from sqlalchemy.orm import Session

from .. import models
from ..config import Settings, get_settings
from ..database import atomic
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..history import get_status_history, record_status_change
from ..permissions import PermissionChecker
from ..scoring import PriorityPolicy, calculate_priority_score
from ..sinks import AuditSink, LoggingAuditSink, NotificationSink, emit, notify
from ..state_machine import (
    STATUS_SORT_ORDER,
    is_terminal_status,
    requires_reason,
    validate_transition,
)
from .base import BaseWorkOrderService
from .maintenance import MaintenanceWorkOrderService

logger = logging.getLogger("cmms-core.work_orders")

# Fields callers may set through create/update; status and stamps are owned by transitions
EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "work_order_category_id",
    "work_order_type_id",
    "priority",
    "priority_score",
    "asset_id",
    "form_id",
    "form_version_id",
    "estimated_hours",
    "estimated_parts_cost",
    "estimated_labor_cost",
    "downtime_required",
    "safety_requirements",
    "required_skills",
    "required_certifications",
    "number_of_people",
    "requested_due_date",
    "scheduled_start_date",
    "scheduled_end_date",
    "assigned_team_id",
    "assigned_technician_id",
    "actual_start_date",
    "actual_end_date",
    "actual_hours",
    "actual_parts_cost",
    "actual_labor_cost",
    "source_type",
    "source_id",
    "related_work_order_id",
    "relationship_type",
    "external_reference",
    "tags",
})

# Totals are always computed from their parts and labor components
DERIVED_FIELDS = frozenset({"estimated_total_cost", "actual_total_cost"})

# Fields re-checked by discipline validation when an order is updated
DISCIPLINE_FIELDS = ("asset_id", "work_order_category_id", "work_order_type_id", "source_type", "source_id")

PLANNING_FIELDS = (
    "estimated_hours",
    "estimated_parts_cost",
    "estimated_labor_cost",
    "required_skills",
    "required_certifications",
    "safety_requirements",
    "downtime_required",
    "number_of_people",
)

NOT_NULL_FIELDS = ("work_order_category_id", "priority", "priority_score", "source_type", "downtime_required")

NON_NEGATIVE_FIELDS = ("estimated_hours", "estimated_parts_cost", "estimated_labor_cost", "number_of_people")

StatusLike = Union[models.WorkOrderStatus, str]


def coerce_status(value: StatusLike) -> models.WorkOrderStatus:
    try:
        return models.WorkOrderStatus(value)
    except ValueError:
        raise ValidationError.for_field("status", f"Unknown work order status: {value}")


def _variance(estimated: Optional[float], actual: Optional[float]) -> Optional[float]:
    """Percentage deviation of actual from estimated; None when not computable."""
    if actual is None or not estimated:
        return None
    return round((actual - estimated) / estimated * 100, 2)


def _status_sort_expression():
    """CASE expression mapping status to list order (active work first)."""
    return case(
        *[(models.WorkOrder.status == status, order)
          for status, order in STATUS_SORT_ORDER.items()],
        else_=99
    )


class WorkOrderService:
    """
    Lifecycle orchestrator for work orders.

    Collaborators (audit sink, notification sink, permission oracle, priority
    policy) are injected; defaults log audit events, drop notifications,
    allow every permission and use the standard priority scoring.
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        audit: Optional[AuditSink] = None,
        notifier: Optional[NotificationSink] = None,
        permissions: Optional[PermissionChecker] = None,
        priority_policy: Optional[PriorityPolicy] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.audit = audit if audit is not None else LoggingAuditSink()
        self.notifier = notifier if notifier is not None else NotificationSink()
        self.permissions = permissions if permissions is not None else PermissionChecker()
        self.priority_policy = priority_policy or calculate_priority_score
        self.disciplines: dict[str, BaseWorkOrderService] = {}
        self.register_discipline(MaintenanceWorkOrderService(self))

    # ------------------------------------------------------------------
    # Disciplines
    # ------------------------------------------------------------------

    def register_discipline(self, service: BaseWorkOrderService) -> None:
        self.disciplines[service.get_discipline()] = service

    def get_discipline_service(self, discipline: str) -> BaseWorkOrderService:
        service = self.disciplines.get(discipline)
        if service is None:
            raise ValidationError.for_field("discipline", f"Unsupported discipline: {discipline}")
        return service

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_work_order(self, work_order_id: int) -> models.WorkOrder:
        work_order = self.db.get(models.WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError("Work order", work_order_id)
        return work_order

    def lock_work_order(self, work_order_id: int) -> models.WorkOrder:
        """
        Re-read a work order with a row lock for the rest of the transaction.

        Pending changes are flushed first so the refreshed instance keeps them.
        On PostgreSQL this issues SELECT ... FOR UPDATE; SQLite ignores the lock.
        """
        self.db.flush()
        work_order = (
            self.db.query(models.WorkOrder)
            .filter(models.WorkOrder.id == work_order_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if work_order is None:
            raise NotFoundError("Work order", work_order_id)
        return work_order

    def list_work_orders(
        self,
        status: Optional[StatusLike] = None,
        discipline: Optional[str] = None,
        asset_id: Optional[int] = None,
        technician_id: Optional[int] = None,
        category_id: Optional[int] = None,
        priority: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[models.WorkOrder], int]:
        """
        List work orders with optional filters.

        Results are sorted by workflow status (in_progress first, terminal
        last), then by priority score descending, then newest first.

        Returns:
            Tuple of (work orders page, total matching count)
        """
        query = self.db.query(models.WorkOrder)

        if status is not None:
            query = query.filter(models.WorkOrder.status == coerce_status(status))
        if discipline:
            query = query.filter(models.WorkOrder.discipline == discipline)
        if asset_id is not None:
            query = query.filter(models.WorkOrder.asset_id == asset_id)
        if technician_id is not None:
            query = query.filter(models.WorkOrder.assigned_technician_id == technician_id)
        if category_id is not None:
            query = query.filter(models.WorkOrder.work_order_category_id == category_id)
        if priority:
            query = query.filter(models.WorkOrder.priority == priority)

        total = query.count()

        query = query.order_by(
            _status_sort_expression(),
            models.WorkOrder.priority_score.desc(),
            models.WorkOrder.created_at.desc(),
            models.WorkOrder.id.desc(),
        )
        return query.offset(skip).limit(limit).all(), total

    def get_status_history(self, work_order: models.WorkOrder) -> list[models.WorkOrderStatusHistory]:
        return get_status_history(self.db, work_order.id)

    def generate_work_order_number(self, now: Optional[datetime] = None) -> str:
        """
        Generate the next work order number for the month (WO-YYYY-MM-NNNNN).

        The sequence restarts every month and continues from the highest
        number already issued with the same prefix.
        """
        if now is None:
            now = datetime.utcnow()
        prefix = f"WO-{now:%Y-%m}-"

        last = (
            self.db.query(models.WorkOrder.work_order_number)
            .filter(models.WorkOrder.work_order_number.like(f"{prefix}%"))
            .order_by(models.WorkOrder.work_order_number.desc())
            .first()
        )
        sequence = int(last[0][len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:05d}"

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    def _check_payload(self, data: dict[str, Any], creating: bool) -> None:
        if "status" in data:
            raise ValidationError.for_field("status", "Status changes must go through a status transition")

        derived = sorted(key for key in data if key in DERIVED_FIELDS)
        if derived:
            raise ValidationError({key: ["Computed from parts and labor costs"] for key in derived})

        unknown = sorted(key for key in data if key not in EDITABLE_FIELDS)
        if unknown:
            raise ValidationError({key: ["Unknown work order field"] for key in unknown})

        errors: dict[str, list[str]] = {}
        if creating or "title" in data:
            title = data.get("title")
            if not title or not str(title).strip():
                errors.setdefault("title", []).append("Title is required")
        if creating and not data.get("work_order_category_id"):
            errors.setdefault("work_order_category_id", []).append("Category is required")

        for field in NOT_NULL_FIELDS:
            if field in data and data[field] is None:
                errors.setdefault(field, []).append("Must not be empty")

        score = data.get("priority_score")
        if score is not None and not 0 <= score <= 100:
            errors.setdefault("priority_score", []).append("Priority score must be between 0 and 100")

        for field in NON_NEGATIVE_FIELDS:
            value = data.get(field)
            if value is not None and value < 0:
                errors.setdefault(field, []).append("Must not be negative")

        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _apply_fields(work_order: models.WorkOrder, data: dict[str, Any]) -> None:
        for field, value in data.items():
            setattr(work_order, field, value)

        if "estimated_parts_cost" in data or "estimated_labor_cost" in data:
            work_order.estimated_total_cost = (
                (work_order.estimated_parts_cost or 0) + (work_order.estimated_labor_cost or 0)
            )
        if "actual_parts_cost" in data or "actual_labor_cost" in data:
            work_order.actual_total_cost = (
                (work_order.actual_parts_cost or 0) + (work_order.actual_labor_cost or 0)
            )

    def create(self, data: dict[str, Any], actor_id: int) -> models.WorkOrder:
        """
        Create a work order in ``requested`` status.

        The payload is validated by the discipline service, then the order and
        its creation history row (from_status=None) are written in one
        transaction.

        Args:
            data: Work order fields; ``discipline`` selects the validation rules
            actor_id: Requesting user

        Returns:
            The created work order

        Raises:
            ValidationError: If the payload breaks a common or discipline rule
        """
        payload = dict(data)
        discipline = payload.pop("discipline", None) or models.Discipline.MAINTENANCE
        discipline_service = self.get_discipline_service(discipline)

        self._check_payload(payload, creating=True)
        discipline_service.validate_for_discipline(payload)

        now = datetime.utcnow()
        with atomic(self.db, "create work order"):
            work_order = models.WorkOrder(
                work_order_number=self.generate_work_order_number(now),
                discipline=discipline,
                status=models.WorkOrderStatus.REQUESTED,
                requested_by=actor_id,
                requested_at=now,
                created_at=now,
                updated_at=now,
            )
            self._apply_fields(work_order, payload)
            self.db.add(work_order)
            self.db.flush()

            record_status_change(
                self.db,
                work_order,
                from_status=None,
                to_status=models.WorkOrderStatus.REQUESTED,
                changed_by=actor_id,
                reason="Work order created",
                changed_at=now,
            )
            self.db.flush()

        self.db.refresh(work_order)
        logger.info(
            f"Created work order {work_order.work_order_number} (id={work_order.id}, "
            f"discipline={discipline}) by user {actor_id}"
        )
        emit(self.audit, "work_order.created", {
            "work_order_id": work_order.id,
            "work_order_number": work_order.work_order_number,
            "created_by": actor_id,
        })
        return work_order

    def update(self, work_order: models.WorkOrder, data: dict[str, Any], actor_id: int) -> models.WorkOrder:
        """
        Update work order fields.

        The merged data (current values overlaid with the update) is
        re-validated against the discipline rules, so an update cannot
        silently break them. Terminal orders are read-only.
        """
        payload = dict(data)
        self._check_payload(payload, creating=False)

        if is_terminal_status(work_order.status):
            raise InvalidTransitionError(
                f"Work order {work_order.work_order_number} is {work_order.status.value} and cannot be modified",
                current_status=work_order.status,
            )

        merged = {field: getattr(work_order, field) for field in DISCIPLINE_FIELDS}
        merged.update(payload)
        self.get_discipline_service(work_order.discipline).validate_for_discipline(
            merged, exclude_work_order_id=work_order.id
        )

        with atomic(self.db, "update work order"):
            work_order = self.lock_work_order(work_order.id)
            self._apply_fields(work_order, payload)
            self.db.flush()

        self.db.refresh(work_order)
        logger.info(f"Updated work order {work_order.work_order_number} fields {sorted(payload)} by user {actor_id}")
        emit(self.audit, "work_order.updated", {
            "work_order_id": work_order.id,
            "fields": sorted(payload),
            "updated_by": actor_id,
        })
        return work_order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_status_side_effects(
        work_order: models.WorkOrder,
        previous: models.WorkOrderStatus,
        target: models.WorkOrderStatus,
        actor_id: int,
        now: datetime,
    ) -> None:
        Status = models.WorkOrderStatus
        if target == Status.APPROVED and work_order.approved_at is None:
            work_order.approved_at = now
            work_order.approved_by = actor_id
        elif target == Status.PLANNED and work_order.planned_at is None:
            work_order.planned_at = now
            work_order.planned_by = actor_id
        elif target == Status.IN_PROGRESS:
            if work_order.actual_start_date is None:
                work_order.actual_start_date = now
            if previous == Status.COMPLETED:
                # Rework reopens the order
                work_order.actual_end_date = None
        elif target == Status.COMPLETED and work_order.actual_end_date is None:
            work_order.actual_end_date = now
        elif target == Status.VERIFIED:
            work_order.verified_at = now
            work_order.verified_by = actor_id
        elif target == Status.CLOSED:
            work_order.closed_at = now
            work_order.closed_by = actor_id

    def transition_to(
        self,
        work_order: models.WorkOrder,
        new_status: StatusLike,
        actor_id: int,
        reason: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> models.WorkOrder:
        """
        Move a work order to a new status.

        Validates the transition against the matrix, applies status-linked
        stamps and appends exactly one history row. Either everything
        persists or nothing does.

        Args:
            work_order: Work order to transition
            new_status: Target status
            actor_id: User performing the change
            reason: Justification (required for rejected, cancelled, on_hold)
            metadata: Structured details stored on the history row

        Returns:
            The updated work order

        Raises:
            ValidationError: If a required reason is missing
            InvalidTransitionError: If the transition is not allowed
        """
        target = coerce_status(new_status)
        if requires_reason(target) and not (reason and reason.strip()):
            raise ValidationError.for_field("reason", f"A reason is required to move a work order to {target.value}")

        with atomic(self.db, f"transition work order to {target.value}"):
            work_order = self.lock_work_order(work_order.id)
            previous = work_order.status
            validate_transition(previous, target)

            now = datetime.utcnow()
            work_order.status = target
            work_order.updated_at = now
            self._apply_status_side_effects(work_order, previous, target, actor_id, now)

            record_status_change(
                self.db,
                work_order,
                from_status=previous,
                to_status=target,
                changed_by=actor_id,
                reason=reason,
                details=metadata,
                changed_at=now,
            )
            self.db.flush()

        logger.info(
            f"Work order {work_order.work_order_number}: {previous.value} → {target.value} by user {actor_id}"
        )
        emit(self.audit, "work_order.status_changed", {
            "work_order_id": work_order.id,
            "from_status": previous.value,
            "to_status": target.value,
            "changed_by": actor_id,
            "reason": reason,
        })
        return work_order

    def transition_status(
        self,
        work_order: models.WorkOrder,
        new_status: StatusLike,
        actor_id: int,
        reason: Optional[str] = None,
    ) -> models.WorkOrder:
        return self.transition_to(work_order, new_status, actor_id, reason=reason)

    def approve(self, work_order: models.WorkOrder, actor_id: int, reason: Optional[str] = None) -> models.WorkOrder:
        return self.transition_to(work_order, models.WorkOrderStatus.APPROVED, actor_id, reason=reason)

    def reject(self, work_order: models.WorkOrder, actor_id: int, reason: str) -> models.WorkOrder:
        return self.transition_to(work_order, models.WorkOrderStatus.REJECTED, actor_id, reason=reason)

    def put_on_hold(self, work_order: models.WorkOrder, actor_id: int, reason: str) -> models.WorkOrder:
        return self.transition_to(work_order, models.WorkOrderStatus.ON_HOLD, actor_id, reason=reason)

    def resume(
        self,
        work_order: models.WorkOrder,
        actor_id: int,
        to_status: StatusLike,
        reason: Optional[str] = None,
    ) -> models.WorkOrder:
        """Resume a held work order into an explicitly chosen status."""
        if to_status is None:
            raise ValidationError.for_field("to_status", "A resume target status is required")
        target = coerce_status(to_status)

        if work_order.status != models.WorkOrderStatus.ON_HOLD:
            raise InvalidTransitionError(
                f"Work order {work_order.work_order_number} is not on hold (status: {work_order.status.value})",
                current_status=work_order.status,
                requested_status=target,
            )
        return self.transition_to(work_order, target, actor_id, reason=reason or "Resumed from hold")

    def verify(self, work_order: models.WorkOrder, actor_id: int, notes: Optional[str] = None) -> models.WorkOrder:
        return self.transition_to(work_order, models.WorkOrderStatus.VERIFIED, actor_id, reason=notes)

    def close(self, work_order: models.WorkOrder, actor_id: int, notes: Optional[str] = None) -> models.WorkOrder:
        return self.transition_to(work_order, models.WorkOrderStatus.CLOSED, actor_id, reason=notes)

    def cancel(self, work_order: models.WorkOrder, actor_id: int, reason: str) -> models.WorkOrder:
        return self.transition_to(work_order, models.WorkOrderStatus.CANCELLED, actor_id, reason=reason)

    def plan(
        self,
        work_order: models.WorkOrder,
        actor_id: int,
        planning_data: dict[str, Any],
        reason: Optional[str] = None,
    ) -> models.WorkOrder:
        """
        Record planning estimates and move the order to ``planned``.

        ``estimated_total_cost`` is always recomputed as parts + labor.
        """
        unknown = sorted(key for key in planning_data if key not in PLANNING_FIELDS)
        if unknown:
            raise ValidationError({key: ["Not a planning field"] for key in unknown})
        self._check_payload(planning_data, creating=False)

        with atomic(self.db, "plan work order"):
            work_order = self.lock_work_order(work_order.id)
            validate_transition(work_order.status, models.WorkOrderStatus.PLANNED)

            for field, value in planning_data.items():
                setattr(work_order, field, value)
            if work_order.downtime_required is None:
                work_order.downtime_required = False
            work_order.estimated_total_cost = (
                (work_order.estimated_parts_cost or 0) + (work_order.estimated_labor_cost or 0)
            )

            work_order = self.transition_to(
                work_order,
                models.WorkOrderStatus.PLANNED,
                actor_id,
                reason=reason,
                metadata={"estimated_total_cost": work_order.estimated_total_cost},
            )

        return work_order

    def schedule(
        self,
        work_order: models.WorkOrder,
        actor_id: int,
        schedule_data: dict[str, Any],
        reason: Optional[str] = None,
    ) -> models.WorkOrder:
        """Assign a time window (and optionally a technician/team) and move to ``scheduled``."""
        start = schedule_data.get("scheduled_start_date")
        end = schedule_data.get("scheduled_end_date")
        errors: dict[str, list[str]] = {}
        if start is None:
            errors["scheduled_start_date"] = ["Scheduled start date is required"]
        if end is None:
            errors["scheduled_end_date"] = ["Scheduled end date is required"]
        elif start is not None and end <= start:
            errors["scheduled_end_date"] = ["Scheduled end date must be after the start date"]
        if errors:
            raise ValidationError(errors)

        with atomic(self.db, "schedule work order"):
            work_order = self.lock_work_order(work_order.id)
            validate_transition(work_order.status, models.WorkOrderStatus.SCHEDULED)

            work_order.scheduled_start_date = start
            work_order.scheduled_end_date = end
            work_order.assigned_technician_id = schedule_data.get("assigned_technician_id")
            work_order.assigned_team_id = schedule_data.get("assigned_team_id")

            work_order = self.transition_to(work_order, models.WorkOrderStatus.SCHEDULED, actor_id, reason=reason)

        notify(self.notifier, "work_order_scheduled", work_order)
        return work_order

    # ------------------------------------------------------------------
    # Priority and statistics
    # ------------------------------------------------------------------

    def update_priority_score(self, work_order: models.WorkOrder, now: Optional[datetime] = None) -> int:
        """Recompute the priority score with the configured policy and persist it."""
        score = int(self.priority_policy(work_order, now or datetime.utcnow()))
        with atomic(self.db, "update priority score"):
            work_order = self.lock_work_order(work_order.id)
            work_order.priority_score = score
        logger.debug(f"Priority score of work order {work_order.id} set to {score}")
        return score

    def get_statistics(self, work_order: models.WorkOrder, now: Optional[datetime] = None) -> dict[str, Any]:
        """Read-only summary: age, overdue state, estimate variance and progress."""
        if now is None:
            now = datetime.utcnow()

        due = work_order.requested_due_date
        execution = work_order.execution

        return {
            "status": work_order.status.value,
            "age_days": max(0, (now - work_order.created_at).days),
            "overdue": due is not None and due < now,
            "days_overdue": max(0, (now - due).days) if due is not None else 0,
            "estimated_vs_actual": {
                "hours": {
                    "estimated": work_order.estimated_hours,
                    "actual": work_order.actual_hours,
                    "variance": _variance(work_order.estimated_hours, work_order.actual_hours),
                },
                "cost": {
                    "estimated": work_order.estimated_total_cost,
                    "actual": work_order.actual_total_cost,
                    "variance": _variance(work_order.estimated_total_cost, work_order.actual_total_cost),
                },
            },
            "completion_percentage": execution.completion_percentage if execution is not None else 0,
        }
