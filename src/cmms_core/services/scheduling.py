"""Scheduling: time windows, technician availability and a greedy load balancer."""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, or_

from .. import models
from ..database import atomic
from ..errors import WorkOrderError
from ..state_machine import TERMINAL_STATUSES
from .work_orders import WorkOrderService, coerce_status

logger = logging.getLogger("cmms-core.scheduling")

# Orders occupying a technician's time
BUSY_STATUSES = (models.WorkOrderStatus.SCHEDULED, models.WorkOrderStatus.IN_PROGRESS)

# Batch scheduling outcomes
SCHEDULED = "scheduled"
RESCHEDULED = "rescheduled"
UPDATED = "updated"
SKIPPED = "skipped"


def _overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Three-way overlap test: A starts within B, ends within B, or spans B."""
    return (
        start_b <= start_a <= end_b
        or start_b <= end_a <= end_b
        or (start_a <= start_b and end_a >= end_b)
    )


def count_weekdays(start: datetime, end: datetime) -> int:
    """Number of Monday-Friday dates in [start.date(), end.date())."""
    first = start.date()
    days = (end.date() - first).days
    return sum(1 for offset in range(max(0, days)) if (first + timedelta(days=offset)).weekday() < 5)


class WorkOrderSchedulingService:
    """Assigns technicians and time windows to approved/planned work orders."""

    def __init__(self, work_orders: WorkOrderService):
        self.work_orders = work_orders
        self.db = work_orders.db
        self.settings = work_orders.settings

    def get_scheduling_calendar(
        self,
        start: datetime,
        end: datetime,
        technician_id: Optional[int] = None,
        asset_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> dict[str, list[models.WorkOrder]]:
        """Work orders whose scheduled start lies in [start, end], grouped by day (YYYY-MM-DD)."""
        query = self.db.query(models.WorkOrder).filter(
            models.WorkOrder.scheduled_start_date >= start,
            models.WorkOrder.scheduled_start_date <= end,
        )
        if technician_id is not None:
            query = query.filter(models.WorkOrder.assigned_technician_id == technician_id)
        if asset_id is not None:
            query = query.filter(models.WorkOrder.asset_id == asset_id)
        if status:
            query = query.filter(models.WorkOrder.status == coerce_status(status))

        calendar: dict[str, list[models.WorkOrder]] = {}
        for work_order in query.order_by(models.WorkOrder.scheduled_start_date, models.WorkOrder.id):
            day = work_order.scheduled_start_date.strftime("%Y-%m-%d")
            calendar.setdefault(day, []).append(work_order)
        return calendar

    def check_technician_availability(
        self,
        technician_id: int,
        start: datetime,
        end: datetime,
        exclude_work_order_id: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Check whether a technician is free during [start, end].

        A conflict is any scheduled or in-progress order assigned to the
        technician whose window overlaps the requested one.

        Returns:
            Dict with ``available``, ``conflicts`` (work orders) and
            ``workload_hours`` (sum of the conflicts' estimates)
        """
        WorkOrder = models.WorkOrder
        query = self.db.query(WorkOrder).filter(
            WorkOrder.assigned_technician_id == technician_id,
            WorkOrder.status.in_(BUSY_STATUSES),
            or_(
                WorkOrder.scheduled_start_date.between(start, end),
                WorkOrder.scheduled_end_date.between(start, end),
                and_(WorkOrder.scheduled_start_date <= start, WorkOrder.scheduled_end_date >= end),
            ),
        )
        if exclude_work_order_id is not None:
            query = query.filter(WorkOrder.id != exclude_work_order_id)

        conflicts = query.order_by(WorkOrder.scheduled_start_date).all()
        return {
            "available": not conflicts,
            "conflicts": conflicts,
            "workload_hours": sum(wo.estimated_hours or 0 for wo in conflicts),
        }

    def schedule_batch(self, entries: Iterable[dict[str, Any]], scheduler_id: int) -> list[dict[str, Any]]:
        """
        Schedule several work orders, reporting an outcome per entry.

        Each entry carries ``work_order_id``, ``start_date``, ``end_date`` and
        optionally ``technician_id``/``team_id``. Outcomes:

        - ``scheduled``: a planned order moved to scheduled
        - ``rescheduled``: an already scheduled order got a new window
        - ``updated``: an approved order stored the window but stays approved
          (it must be planned before it can be scheduled)
        - ``skipped``: the entry could not be applied; ``reason`` says why

        Each entry commits on its own; a failing entry never affects the others.
        """
        results = []
        for entry in entries:
            work_order_id = entry.get("work_order_id")
            try:
                outcome = self._schedule_entry(entry, scheduler_id)
            except WorkOrderError as e:
                logger.warning(f"Batch scheduling skipped work order {work_order_id}: {e.message}")
                outcome = {"result": SKIPPED, "reason": e.message}
            outcome["work_order_id"] = work_order_id
            results.append(outcome)

        counts = Counter(result["result"] for result in results)
        logger.info(f"Batch scheduling by user {scheduler_id}: {dict(counts)}")
        return results

    def _schedule_entry(self, entry: dict[str, Any], scheduler_id: int) -> dict[str, Any]:
        work_order = self.db.get(models.WorkOrder, entry.get("work_order_id"))
        if work_order is None:
            return {"result": SKIPPED, "reason": "Work order not found"}

        schedule_data = {
            "scheduled_start_date": entry.get("start_date"),
            "scheduled_end_date": entry.get("end_date"),
            "assigned_technician_id": entry.get("technician_id"),
            "assigned_team_id": entry.get("team_id"),
        }
        status = work_order.status

        if status == models.WorkOrderStatus.PLANNED:
            self.work_orders.schedule(work_order, scheduler_id, schedule_data, reason="Scheduled by batch operation")
            return {"result": SCHEDULED}

        if status in (models.WorkOrderStatus.SCHEDULED, models.WorkOrderStatus.APPROVED):
            start, end = schedule_data["scheduled_start_date"], schedule_data["scheduled_end_date"]
            if start is None or end is None or end <= start:
                return {"result": SKIPPED, "reason": "A valid start and end date are required"}
            with atomic(self.db, "batch schedule update"):
                work_order = self.work_orders.lock_work_order(work_order.id)
                for field, value in schedule_data.items():
                    setattr(work_order, field, value)
            if status == models.WorkOrderStatus.SCHEDULED:
                return {"result": RESCHEDULED}
            return {"result": UPDATED, "reason": "Approved orders must be planned before they are scheduled"}

        return {"result": SKIPPED, "reason": f"Work orders in status {status.value} cannot be scheduled"}

    def get_technician_workload(self, technician_id: int, start: datetime, end: datetime) -> dict[str, Any]:
        """Open work assigned to a technician with a scheduled start in [start, end]."""
        work_orders = (
            self.db.query(models.WorkOrder)
            .filter(
                models.WorkOrder.assigned_technician_id == technician_id,
                models.WorkOrder.scheduled_start_date >= start,
                models.WorkOrder.scheduled_start_date <= end,
                models.WorkOrder.status.notin_(list(TERMINAL_STATUSES)),
            )
            .all()
        )

        total_hours = sum(wo.estimated_hours or 0 for wo in work_orders)
        work_days = count_weekdays(start, end)
        hours_per_day = total_hours / work_days if work_days > 0 else 0

        return {
            "technician_id": technician_id,
            "total_work_orders": len(work_orders),
            "total_hours": total_hours,
            "work_days": work_days,
            "hours_per_day": round(hours_per_day, 2),
            "utilization_percentage": round(hours_per_day / self.settings.workday_hours * 100, 2),
            "work_orders_by_priority": dict(Counter(wo.priority for wo in work_orders)),
            "work_orders_by_category": dict(Counter(wo.category_code for wo in work_orders)),
        }

    def find_next_available_slot(
        self,
        technician_id: int,
        start: datetime,
        end: datetime,
        hours: float,
        proposed: Optional[list[dict[str, Any]]] = None,
    ) -> Optional[datetime]:
        """
        Earliest day-aligned slot of ``hours`` in [start, end) for a technician.

        Candidate starts advance one day at a time from ``start``. Slots in
        ``proposed`` (not yet persisted) count as conflicts too.
        """
        current = start
        while current < end:
            slot_end = current + timedelta(hours=hours)
            free = self.check_technician_availability(technician_id, current, slot_end)["available"]
            if free and proposed:
                free = not any(
                    item["technician_id"] == technician_id
                    and _overlaps(current, slot_end, item["start_date"], item["end_date"])
                    for item in proposed
                )
            if free:
                return current
            current += timedelta(days=1)
        return None

    def optimize_schedule(
        self,
        work_orders: Iterable[models.WorkOrder],
        technician_ids: Iterable[int],
        start: datetime,
        end: datetime,
    ) -> dict[str, Any]:
        """
        Propose a schedule distributing work orders over technicians.

        Greedy heuristic: orders by descending priority score; each goes to
        the first technician with the lowest accumulated workload, at that
        technician's earliest free slot. Nothing is persisted.

        Returns:
            Dict with ``schedule`` (proposals), ``technician_workloads``
            (hours), ``unscheduled`` (work order ids) and ``unscheduled_count``
        """
        orders = list(work_orders)
        workloads: dict[int, float] = {technician_id: 0.0 for technician_id in technician_ids}
        schedule: list[dict[str, Any]] = []
        unscheduled: list[int] = []

        for work_order in sorted(orders, key=lambda wo: wo.priority_score or 0, reverse=True):
            if not workloads:
                unscheduled.append(work_order.id)
                continue

            technician_id = min(workloads, key=workloads.get)
            hours = work_order.estimated_hours or self.settings.default_order_duration_hours
            slot = self.find_next_available_slot(technician_id, start, end, hours, proposed=schedule)

            if slot is None:
                unscheduled.append(work_order.id)
                continue

            schedule.append({
                "work_order_id": work_order.id,
                "technician_id": technician_id,
                "start_date": slot,
                "end_date": slot + timedelta(hours=hours),
            })
            workloads[technician_id] += hours

        logger.info(
            f"Optimized schedule: {len(schedule)} proposed, {len(unscheduled)} unscheduled "
            f"across {len(workloads)} technicians"
        )
        return {
            "schedule": schedule,
            "technician_workloads": workloads,
            "unscheduled": unscheduled,
            "unscheduled_count": len(unscheduled),
        }
