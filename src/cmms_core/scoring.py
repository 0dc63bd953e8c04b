"""Priority scoring policy for work orders."""
from datetime import datetime
from typing import Callable, Optional

from . import models

PriorityPolicy = Callable[[models.WorkOrder, datetime], int]

BASE_SCORE = 50
MAX_AGE_POINTS = 10
MAX_OVERDUE_POINTS = 20


def calculate_priority_score(work_order: models.WorkOrder, now: Optional[datetime] = None) -> int:
    """Score a work order from 0 (lowest) to 100 (highest).

    Starts from the current score, adds one point per day of age (max 10)
    and two points per day overdue (max 20).
    """
    if now is None:
        now = datetime.utcnow()

    score = work_order.priority_score if work_order.priority_score is not None else BASE_SCORE

    created_at = work_order.created_at or now
    age_days = max(0, (now - created_at).days)
    score += min(age_days, MAX_AGE_POINTS)

    due = work_order.requested_due_date
    if due is not None and due < now:
        overdue_days = (now - due).days
        score += min(overdue_days * 2, MAX_OVERDUE_POINTS)

    return max(0, min(100, score))
