"""Routine oracle: due-date computation and work order generation policy.

Runtime-based routines are due when the asset has accumulated
``trigger_runtime_hours`` since the last execution; calendar-based routines
every ``trigger_calendar_days`` after the last completed execution. A routine
that was never executed is due immediately.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("cmms-core.routines")

DEFAULT_DESCRIPTION = "Perform the preventive maintenance routine according to the standard procedure."

# Only these statuses release a routine; a rejected order still holds it
RELEASED_STATUSES = (models.WorkOrderStatus.CLOSED, models.WorkOrderStatus.CANCELLED)


def _runtime_hours_until_due(routine: models.Routine) -> Optional[float]:
    if not routine.trigger_runtime_hours:
        return None
    if routine.last_execution_runtime_hours is None:
        return 0.0

    current_runtime = (routine.asset.current_runtime_hours if routine.asset else None) or 0.0
    since_last = current_runtime - routine.last_execution_runtime_hours
    return max(0.0, routine.trigger_runtime_hours - since_last)


def _calendar_hours_until_due(routine: models.Routine, now: datetime) -> Optional[float]:
    if not routine.trigger_calendar_days:
        return None
    if routine.last_execution_completed_at is None:
        return 0.0

    next_due = routine.last_execution_completed_at + timedelta(days=routine.trigger_calendar_days)
    return max(0.0, (next_due - now).total_seconds() / 3600)


def calculate_hours_until_due(routine: models.Routine, now: Optional[datetime] = None) -> Optional[float]:
    """
    Hours left before the routine is due (0 when due or overdue).

    Returns None when the routine has no interval configured for its trigger type.
    """
    if now is None:
        now = datetime.utcnow()
    if routine.trigger_type == models.TriggerType.RUNTIME_HOURS:
        return _runtime_hours_until_due(routine)
    return _calendar_hours_until_due(routine, now)


def is_due(routine: models.Routine, now: Optional[datetime] = None) -> bool:
    hours = calculate_hours_until_due(routine, now)
    return hours is not None and hours <= 0


def calculate_due_date(routine: models.Routine, now: Optional[datetime] = None) -> datetime:
    """
    Compute the next due date of a routine.

    Calendar routines are anchored on the last completed execution and may
    lie in the past when overdue. Runtime routines project the remaining
    runtime hours onto the wall clock.
    """
    if now is None:
        now = datetime.utcnow()

    if routine.trigger_type == models.TriggerType.RUNTIME_HOURS:
        return now + timedelta(hours=_runtime_hours_until_due(routine) or 0)

    if routine.last_execution_completed_at is None or not routine.trigger_calendar_days:
        return now
    return routine.last_execution_completed_at + timedelta(days=routine.trigger_calendar_days)


get_next_due_date = calculate_due_date


def _open_work_orders_query(db: Session, routine_id: int, exclude_work_order_id: Optional[int] = None):
    query = db.query(models.WorkOrder).filter(
        models.WorkOrder.source_type == models.SourceType.ROUTINE,
        models.WorkOrder.source_id == routine_id,
        models.WorkOrder.status.notin_(RELEASED_STATUSES),
    )
    if exclude_work_order_id is not None:
        query = query.filter(models.WorkOrder.id != exclude_work_order_id)
    return query


def has_open_work_order(
    db: Session,
    routine: models.Routine,
    exclude_work_order_id: Optional[int] = None,
) -> bool:
    """Check whether a work order generated from the routine is still active (not closed or cancelled)."""
    return db.query(
        _open_work_orders_query(db, routine.id, exclude_work_order_id).exists()
    ).scalar()


def get_open_work_order(db: Session, routine: models.Routine) -> Optional[models.WorkOrder]:
    return _open_work_orders_query(db, routine.id).order_by(models.WorkOrder.id).first()


def should_generate_work_order(
    db: Session,
    routine: models.Routine,
    now: Optional[datetime] = None,
) -> bool:
    """
    Decide whether a work order should be generated for the routine now.

    The routine must be active, must not have an open work order, and must
    come due within its advance generation window.
    """
    if not routine.is_active:
        return False
    if has_open_work_order(db, routine):
        return False

    hours_until_due = calculate_hours_until_due(routine, now)
    if hours_until_due is None:
        return False

    advance = routine.advance_generation_hours if routine.advance_generation_hours is not None else 24
    return 0 <= hours_until_due <= advance


def get_priority_from_score(score: Optional[int]) -> str:
    """Convert a numeric priority score into a priority label."""
    if score is None:
        score = 50

    if score >= 90:
        return "emergency"
    elif score >= 75:
        return "urgent"
    elif score >= 60:
        return "high"
    elif score >= 30:
        return "normal"
    return "low"


def interval_label(routine: models.Routine) -> str:
    if routine.trigger_type == models.TriggerType.RUNTIME_HOURS:
        return f"{routine.trigger_runtime_hours}h"
    return f"{routine.trigger_calendar_days} days"


def build_work_order_title(routine: models.Routine) -> str:
    return f"Preventive maintenance - {routine.name} ({interval_label(routine)})"


def build_work_order_description(routine: models.Routine) -> str:
    if routine.trigger_type == models.TriggerType.RUNTIME_HOURS:
        trigger_info = f"Based on operating hours: every {routine.trigger_runtime_hours} hours"
    else:
        trigger_info = f"Calendar based: every {routine.trigger_calendar_days} days"

    description = routine.description or DEFAULT_DESCRIPTION
    return f"{description}\n\n{trigger_info}"


def get_active_routines(db: Session, automatic_only: bool = False) -> list[models.Routine]:
    query = db.query(models.Routine).filter(models.Routine.is_active.is_(True))
    if automatic_only:
        query = query.filter(models.Routine.execution_mode == models.ExecutionMode.AUTOMATIC)
    return query.order_by(models.Routine.id).all()


def generate_work_order(
    db: Session,
    routine: models.Routine,
    actor_id: Optional[int] = None,
    due_date: Optional[datetime] = None,
    service=None,
) -> models.WorkOrder:
    """
    Generate a preventive work order for the routine.

    Delegates to the maintenance discipline so the order is validated,
    numbered and (when configured) auto-approved like any other.

    Args:
        db: Database session
        routine: Routine to generate for
        actor_id: Acting user; the configured system actor when None
        due_date: Explicit due date (defaults to the routine's next due date)
        service: WorkOrderService to use (a default one is built when None)

    Returns:
        The created work order
    """
    # Import here to avoid circular imports
    from .services.work_orders import WorkOrderService

    if service is None:
        service = WorkOrderService(db)

    additional = {"requested_due_date": due_date or calculate_due_date(routine)}
    maintenance = service.get_discipline_service(models.Discipline.MAINTENANCE)
    return maintenance.generate_from_source(
        models.SourceType.ROUTINE, routine, additional, actor_id=actor_id
    )
