"""Tests for scheduling: availability, batches, workload and the optimizer."""
from datetime import datetime, timedelta

import pytest
from conftest import OTHER_TECHNICIAN, REQUESTER, SUPERVISOR, TECHNICIAN

from cmms_core.models import WorkOrderStatus
from cmms_core.services import WorkOrderSchedulingService
from cmms_core.services.scheduling import count_weekdays


@pytest.fixture
def scheduling(service):
    return WorkOrderSchedulingService(service)


@pytest.fixture
def planned_order(service, manual_order_data):
    work_order = service.create(dict(manual_order_data), REQUESTER)
    service.approve(work_order, SUPERVISOR)
    return service.plan(work_order, SUPERVISOR, {"estimated_hours": 3})


def _window(order):
    return order.scheduled_start_date, order.scheduled_end_date


class TestAvailability:
    """Test technician availability checks."""

    def test_overlapping_order_is_a_conflict(self, scheduling, scheduled_order):
        start, end = _window(scheduled_order)
        availability = scheduling.check_technician_availability(
            TECHNICIAN, start + timedelta(hours=1), end + timedelta(hours=1)
        )
        assert availability["available"] is False
        assert [wo.id for wo in availability["conflicts"]] == [scheduled_order.id]
        assert availability["workload_hours"] == 4

    def test_enclosing_order_is_a_conflict(self, scheduling, scheduled_order):
        start, end = _window(scheduled_order)
        availability = scheduling.check_technician_availability(
            TECHNICIAN, start + timedelta(hours=1), end - timedelta(hours=1)
        )
        assert availability["available"] is False

    def test_free_slot(self, scheduling, scheduled_order):
        start, end = _window(scheduled_order)
        assert scheduling.check_technician_availability(
            TECHNICIAN, end + timedelta(hours=1), end + timedelta(hours=3)
        )["available"]
        assert scheduling.check_technician_availability(OTHER_TECHNICIAN, start, end)["available"]

    def test_excluded_order(self, scheduling, scheduled_order):
        start, end = _window(scheduled_order)
        assert scheduling.check_technician_availability(
            TECHNICIAN, start, end, exclude_work_order_id=scheduled_order.id
        )["available"]


class TestBatchScheduling:
    """Test per-entry outcomes of batch scheduling."""

    def test_batch_outcomes(self, service, scheduling, work_order, planned_order, scheduled_order):
        approved = service.create(
            {
                "title": "Inspect coupling",
                "work_order_category_id": work_order.work_order_category_id,
                "asset_id": work_order.asset_id,
            },
            REQUESTER,
        )
        service.approve(approved, SUPERVISOR)

        start = datetime.utcnow().replace(microsecond=0) + timedelta(days=3)
        end = start + timedelta(hours=2)
        entries = [
            {"work_order_id": planned_order.id, "start_date": start, "end_date": end, "technician_id": TECHNICIAN},
            {"work_order_id": scheduled_order.id, "start_date": start, "end_date": end},
            {"work_order_id": approved.id, "start_date": start, "end_date": end},
            {"work_order_id": 999, "start_date": start, "end_date": end},
        ]

        results = scheduling.schedule_batch(entries, SUPERVISOR)
        outcomes = {r["work_order_id"]: r["result"] for r in results}

        assert outcomes[planned_order.id] == "scheduled"
        assert outcomes[scheduled_order.id] == "rescheduled"
        assert outcomes[approved.id] == "updated"
        assert outcomes[999] == "skipped"

        assert service.get_work_order(planned_order.id).status == WorkOrderStatus.SCHEDULED
        assert service.get_work_order(scheduled_order.id).scheduled_start_date == start
        reloaded = service.get_work_order(approved.id)
        assert reloaded.status == WorkOrderStatus.APPROVED
        assert reloaded.scheduled_start_date == start

    def test_invalid_window_is_skipped(self, scheduling, planned_order):
        start = datetime.utcnow()
        results = scheduling.schedule_batch(
            [{"work_order_id": planned_order.id, "start_date": start, "end_date": start}], SUPERVISOR
        )
        assert results[0]["result"] == "skipped"
        assert results[0]["reason"]
        assert planned_order.status == WorkOrderStatus.PLANNED

    def test_terminal_order_is_skipped_with_reason(self, service, scheduling, work_order):
        service.cancel(work_order, SUPERVISOR, "Not needed")
        start = datetime.utcnow()
        results = scheduling.schedule_batch(
            [{"work_order_id": work_order.id, "start_date": start, "end_date": start + timedelta(hours=1)}],
            SUPERVISOR,
        )
        assert results == [{
            "work_order_id": work_order.id,
            "result": "skipped",
            "reason": "Work orders in status cancelled cannot be scheduled",
        }]


class TestWorkload:
    """Test workload and calendar views."""

    def test_count_weekdays(self):
        # Monday 2024-01-01 to Monday 2024-01-08: five weekdays
        assert count_weekdays(datetime(2024, 1, 1), datetime(2024, 1, 8)) == 5
        assert count_weekdays(datetime(2024, 1, 6), datetime(2024, 1, 8)) == 0

    def test_workload(self, scheduling, scheduled_order):
        start = scheduled_order.scheduled_start_date - timedelta(days=1)
        workload = scheduling.get_technician_workload(TECHNICIAN, start, start + timedelta(days=7))

        assert workload["total_work_orders"] == 1
        assert workload["total_hours"] == 4
        assert workload["work_days"] == 5
        assert workload["hours_per_day"] == 0.8
        assert workload["utilization_percentage"] == 10.0
        assert workload["work_orders_by_category"] == {"corrective": 1}

    def test_calendar_groups_by_day(self, scheduling, scheduled_order):
        start = scheduled_order.scheduled_start_date
        calendar = scheduling.get_scheduling_calendar(start - timedelta(days=1), start + timedelta(days=1))
        assert list(calendar) == [start.strftime("%Y-%m-%d")]
        assert calendar[start.strftime("%Y-%m-%d")][0].id == scheduled_order.id


class TestOptimizer:
    """Test the greedy schedule proposal."""

    def test_next_available_slot_skips_busy_day(self, scheduling, scheduled_order):
        start = scheduled_order.scheduled_start_date
        slot = scheduling.find_next_available_slot(TECHNICIAN, start, start + timedelta(days=5), 2)
        assert slot == start + timedelta(days=1)

    def test_distributes_by_priority_and_workload(self, service, scheduling, manual_order_data):
        orders = []
        for score in (40, 90, 70):
            data = dict(manual_order_data, priority_score=score, estimated_hours=2)
            orders.append(service.create(data, REQUESTER))

        start = datetime(2030, 1, 7, 8, 0)
        proposal = scheduling.optimize_schedule(orders, [TECHNICIAN, OTHER_TECHNICIAN], start, start + timedelta(days=5))

        assigned = [(slot["work_order_id"], slot["technician_id"]) for slot in proposal["schedule"]]
        assert assigned == [
            (orders[1].id, TECHNICIAN),
            (orders[2].id, OTHER_TECHNICIAN),
            (orders[0].id, TECHNICIAN),
        ]
        # The technician's second order goes to the next day
        assert proposal["schedule"][2]["start_date"] == start + timedelta(days=1)
        assert proposal["technician_workloads"] == {TECHNICIAN: 4, OTHER_TECHNICIAN: 2}
        assert proposal["unscheduled_count"] == 0

    def test_without_technicians_everything_is_unscheduled(self, scheduling, work_order):
        start = datetime(2030, 1, 7, 8, 0)
        proposal = scheduling.optimize_schedule([work_order], [], start, start + timedelta(days=5))
        assert proposal["schedule"] == []
        assert proposal["unscheduled"] == [work_order.id]
