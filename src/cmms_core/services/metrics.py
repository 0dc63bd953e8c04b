"""Read-only work order metrics: rates, reliability figures and backlog.

Every window filters on ``created_at`` in [start, end]. Ratios are rounded to
two decimals and empty sets yield 0 instead of dividing by zero.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from .. import models
from ..state_machine import COMPLETED_STATUSES, TERMINAL_STATUSES

logger = logging.getLogger("cmms-core.metrics")


def _ratio(part: float, whole: float) -> float:
    """Percentage of part over whole, 0 when whole is empty."""
    if not whole:
        return 0
    return round(part / whole * 100, 2)


def _average(values: list[float]) -> float:
    if not values:
        return 0
    return round(sum(values) / len(values), 2)


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def _breakdown(values: Iterable[Any], total: int) -> dict[str, dict[str, float]]:
    counts = Counter(values)
    return {
        str(key): {"count": count, "percentage": _ratio(count, total)}
        for key, count in counts.items()
    }


def _is_completed(work_order: models.WorkOrder) -> bool:
    return work_order.status in COMPLETED_STATUSES


def _completion_hours(work_order: models.WorkOrder) -> Optional[float]:
    if work_order.actual_start_date is None or work_order.actual_end_date is None:
        return None
    return _hours_between(work_order.actual_start_date, work_order.actual_end_date)


class WorkOrderMetricsService:
    """Aggregations over work order history. Never mutates anything."""

    def __init__(self, db: Session):
        self.db = db

    def _window(self, start: datetime, end: datetime, **filters) -> list[models.WorkOrder]:
        query = self.db.query(models.WorkOrder).filter(
            models.WorkOrder.created_at >= start,
            models.WorkOrder.created_at <= end,
        )
        for field, value in filters.items():
            query = query.filter(getattr(models.WorkOrder, field) == value)
        return query.all()

    def _has_follow_up(self, work_order: models.WorkOrder) -> bool:
        return self.db.query(
            self.db.query(models.WorkOrder)
            .filter(
                models.WorkOrder.related_work_order_id == work_order.id,
                models.WorkOrder.relationship_type == models.RelationshipType.FOLLOW_UP,
            )
            .exists()
        ).scalar()

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_completion_rate(work_orders: list[models.WorkOrder]) -> float:
        completed = sum(1 for wo in work_orders if _is_completed(wo))
        return _ratio(completed, len(work_orders))

    @staticmethod
    def calculate_on_time_rate(work_orders: list[models.WorkOrder]) -> float:
        """Share of orders with a due date that were closed on or before it."""
        with_due_date = [wo for wo in work_orders if wo.requested_due_date is not None]
        on_time = sum(
            1 for wo in with_due_date
            if wo.status == models.WorkOrderStatus.CLOSED
            and wo.closed_at is not None
            and wo.closed_at <= wo.requested_due_date
        )
        return _ratio(on_time, len(with_due_date))

    @staticmethod
    def calculate_average_completion_time(work_orders: list[models.WorkOrder]) -> float:
        """Average hours from actual start to actual end."""
        durations = [hours for hours in map(_completion_hours, work_orders) if hours is not None]
        return _average(durations)

    @staticmethod
    def calculate_efficiency_rate(work_orders: list[models.WorkOrder]) -> float:
        """Estimated over actual hours, as a percentage."""
        measured = [wo for wo in work_orders if wo.estimated_hours and wo.actual_hours]
        total_estimated = sum(wo.estimated_hours for wo in measured)
        total_actual = sum(wo.actual_hours for wo in measured)
        return _ratio(total_estimated, total_actual)

    @staticmethod
    def calculate_total_costs(work_orders: list[models.WorkOrder]) -> dict[str, float]:
        def total(field: str) -> float:
            return sum(getattr(wo, field) or 0 for wo in work_orders)

        return {
            "estimated_total": total("estimated_total_cost"),
            "actual_total": total("actual_total_cost"),
            "estimated_parts": total("estimated_parts_cost"),
            "actual_parts": total("actual_parts_cost"),
            "estimated_labor": total("estimated_labor_cost"),
            "actual_labor": total("actual_labor_cost"),
        }

    # ------------------------------------------------------------------
    # Reliability
    # ------------------------------------------------------------------

    def calculate_mtbf(self, start: datetime, end: datetime) -> float:
        """System MTBF: window hours per corrective failure (0 without failures)."""
        failures = sum(1 for wo in self._window(start, end) if wo.is_corrective())
        if failures == 0:
            return 0
        return round(_hours_between(start, end) / failures, 2)

    def calculate_mttr(self, start: datetime, end: datetime) -> float:
        """System MTTR: average actual hours of corrective orders."""
        repairs = [
            wo.actual_hours for wo in self._window(start, end)
            if wo.is_corrective() and wo.actual_hours is not None
        ]
        return _average(repairs)

    def calculate_pm_compliance(self, start: datetime, end: datetime) -> float:
        preventive = [wo for wo in self._window(start, end) if wo.is_preventive()]
        return self.calculate_completion_rate(preventive)

    def calculate_emergency_response_time(self, start: datetime, end: datetime) -> float:
        """Average hours from creation to actual start of emergency orders."""
        response_times = [
            _hours_between(wo.created_at, wo.actual_start_date)
            for wo in self._window(start, end, priority="emergency")
            if wo.actual_start_date is not None
        ]
        return _average(response_times)

    def calculate_first_time_fix_rate(self, start: datetime, end: datetime) -> float:
        """Share of completed corrective orders that needed no follow-up order."""
        completed = [wo for wo in self._window(start, end) if wo.is_corrective() and _is_completed(wo)]
        fixed = sum(1 for wo in completed if not self._has_follow_up(wo))
        return _ratio(fixed, len(completed))

    def calculate_backlog(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Currently open (non-terminal) work, regardless of window."""
        if now is None:
            now = datetime.utcnow()

        open_orders = (
            self.db.query(models.WorkOrder)
            .filter(models.WorkOrder.status.notin_(list(TERMINAL_STATUSES)))
            .all()
        )
        return {
            "total_count": len(open_orders),
            "total_hours": sum(wo.estimated_hours or 0 for wo in open_orders),
            "by_category": dict(Counter(wo.category_code for wo in open_orders)),
            "by_priority": dict(Counter(wo.priority for wo in open_orders)),
            "overdue_count": sum(
                1 for wo in open_orders
                if wo.requested_due_date is not None and wo.requested_due_date < now
            ),
        }

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_overview_metrics(self, start: datetime, end: datetime) -> dict[str, Any]:
        work_orders = self._window(start, end)
        total = len(work_orders)

        return {
            "total_work_orders": total,
            "by_category": _breakdown((wo.category_code for wo in work_orders), total),
            "by_status": _breakdown((wo.status.value for wo in work_orders), total),
            "by_priority": _breakdown((wo.priority for wo in work_orders), total),
            "completion_rate": self.calculate_completion_rate(work_orders),
            "on_time_rate": self.calculate_on_time_rate(work_orders),
            "average_completion_time": self.calculate_average_completion_time(work_orders),
            "total_costs": self.calculate_total_costs(work_orders),
        }

    def get_performance_metrics(
        self,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        metrics = {
            "mtbf": self.calculate_mtbf(start, end),
            "mttr": self.calculate_mttr(start, end),
            "pm_compliance": self.calculate_pm_compliance(start, end),
            "emergency_response_time": self.calculate_emergency_response_time(start, end),
            "first_time_fix_rate": self.calculate_first_time_fix_rate(start, end),
            "backlog": self.calculate_backlog(now),
        }
        logger.debug(f"Performance metrics {start.isoformat()}..{end.isoformat()}: mtbf={metrics['mtbf']}")
        return metrics

    def get_technician_metrics(self, technician_id: int, start: datetime, end: datetime) -> dict[str, Any]:
        work_orders = self._window(start, end, assigned_technician_id=technician_id)
        completed = [wo for wo in work_orders if _is_completed(wo)]

        return {
            "technician_id": technician_id,
            "total_assigned": len(work_orders),
            "total_completed": len(completed),
            "completion_rate": _ratio(len(completed), len(work_orders)),
            "average_completion_time": self.calculate_average_completion_time(completed),
            "total_hours_worked": sum(wo.actual_hours or 0 for wo in completed),
            "efficiency_rate": self.calculate_efficiency_rate(completed),
            "by_category": dict(Counter(wo.category_code for wo in completed)),
            "by_priority": dict(Counter(wo.priority for wo in completed)),
        }

    def get_asset_metrics(self, asset_id: int, start: datetime, end: datetime) -> dict[str, Any]:
        """Reliability figures of one asset: MTBF, MTTR and availability."""
        work_orders = self._window(start, end, asset_id=asset_id)
        corrective = [wo for wo in work_orders if wo.is_corrective()]
        window_hours = _hours_between(start, end)

        total_downtime = sum(wo.actual_hours or 0 for wo in work_orders)
        corrective_downtime = sum(wo.actual_hours or 0 for wo in corrective)

        mtbf = round((window_hours - corrective_downtime) / len(corrective), 2) if corrective else 0
        availability = _ratio(window_hours - total_downtime, window_hours)

        return {
            "asset_id": asset_id,
            "total_work_orders": len(work_orders),
            "corrective_count": len(corrective),
            "preventive_count": sum(1 for wo in work_orders if wo.is_preventive()),
            "total_downtime": total_downtime,
            "total_cost": sum(wo.actual_total_cost or 0 for wo in work_orders),
            "mtbf": mtbf,
            "mttr": _average([wo.actual_hours for wo in corrective if wo.actual_hours is not None]),
            "availability": availability,
        }
