"""Append-only status history for work orders."""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("cmms-core.history")


def record_status_change(
    db: Session,
    work_order: models.WorkOrder,
    from_status: Optional[models.WorkOrderStatus],
    to_status: models.WorkOrderStatus,
    changed_by: int,
    reason: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    changed_at: Optional[datetime] = None,
) -> models.WorkOrderStatusHistory:
    """Append one history row for a work order status change.

    The row is added to the session but not committed; the caller's
    transaction decides whether it persists together with the status update.

    Args:
        db: Database session
        work_order: Work order whose status changed (must have an id)
        from_status: Previous status, None only for the creation event
        to_status: New status
        changed_by: Actor id
        reason: Free-text justification
        details: Structured metadata stored alongside the reason
        changed_at: Timestamp of the change (defaults to now)

    Returns:
        The pending history row
    """
    entry = models.WorkOrderStatusHistory(
        work_order_id=work_order.id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        reason=reason,
        details=details,
        created_at=changed_at or datetime.utcnow(),
    )
    db.add(entry)
    logger.debug(
        f"History for work order {work_order.id}: "
        f"{from_status.value if from_status else None} -> {to_status.value} by {changed_by}"
    )
    return entry


def get_status_history(
    db: Session,
    work_order_id: int,
    limit: Optional[int] = None,
) -> list[models.WorkOrderStatusHistory]:
    """
    Get the status history of a work order, oldest first.

    Ordered by created_at, ties broken by insertion order, so the result
    replays the exact sequence of transitions applied to the order.
    """
    query = (
        db.query(models.WorkOrderStatusHistory)
        .filter(models.WorkOrderStatusHistory.work_order_id == work_order_id)
        .order_by(
            models.WorkOrderStatusHistory.created_at.asc(),
            models.WorkOrderStatusHistory.id.asc(),
        )
    )
    if limit:
        query = query.limit(limit)
    return query.all()
