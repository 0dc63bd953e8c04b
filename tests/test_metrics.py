"""Tests for work order metrics."""
from datetime import datetime, timedelta

import pytest
from conftest import ASSET_ID, REQUESTER, SUPERVISOR, TECHNICIAN

from cmms_core.models import WorkOrderStatus
from cmms_core.services import WorkOrderMetricsService


@pytest.fixture
def metrics(db):
    return WorkOrderMetricsService(db)


@pytest.fixture
def window():
    now = datetime.utcnow()
    return now - timedelta(days=1), now + timedelta(days=1)


def _complete(service, work_order, hours):
    """Drive an order to completed with the given actual hours."""
    service.approve(work_order, SUPERVISOR)
    service.plan(work_order, SUPERVISOR, {"estimated_hours": 2})
    start = datetime.utcnow()
    service.schedule(work_order, SUPERVISOR, {
        "scheduled_start_date": start,
        "scheduled_end_date": start + timedelta(hours=2),
        "assigned_technician_id": TECHNICIAN,
    })
    service.transition_to(work_order, WorkOrderStatus.IN_PROGRESS, TECHNICIAN)
    service.transition_to(work_order, WorkOrderStatus.COMPLETED, TECHNICIAN)
    return service.update(work_order, {"actual_hours": hours}, TECHNICIAN)


class TestEmptyWindow:
    """Every figure is zero when nothing happened."""

    def test_overview(self, metrics, window):
        overview = metrics.get_overview_metrics(*window)
        assert overview["total_work_orders"] == 0
        assert overview["completion_rate"] == 0
        assert overview["on_time_rate"] == 0
        assert overview["average_completion_time"] == 0
        assert overview["by_status"] == {}

    def test_performance(self, metrics, window):
        performance = metrics.get_performance_metrics(*window)
        assert performance["mtbf"] == 0
        assert performance["mttr"] == 0
        assert performance["pm_compliance"] == 0
        assert performance["first_time_fix_rate"] == 0
        assert performance["backlog"]["total_count"] == 0

    def test_asset_without_orders(self, metrics, window):
        asset = metrics.get_asset_metrics(ASSET_ID, *window)
        assert asset["mtbf"] == 0
        assert asset["availability"] == 100.0


class TestRates:
    """Test rates over a populated window."""

    def test_completion_and_breakdowns(self, service, metrics, window, work_order, manual_order_data):
        _complete(service, work_order, 3)
        service.create(dict(manual_order_data), REQUESTER)

        overview = metrics.get_overview_metrics(*window)
        assert overview["total_work_orders"] == 2
        assert overview["completion_rate"] == 50.0
        assert overview["by_category"] == {"corrective": {"count": 2, "percentage": 100.0}}
        assert overview["by_status"]["completed"] == {"count": 1, "percentage": 50.0}

    def test_reliability(self, service, metrics, window, work_order):
        _complete(service, work_order, 3)

        performance = metrics.get_performance_metrics(*window)
        assert performance["mtbf"] == 48.0
        assert performance["mttr"] == 3.0
        assert performance["first_time_fix_rate"] == 100.0

        technician = metrics.get_technician_metrics(TECHNICIAN, *window)
        assert technician["total_completed"] == 1
        assert technician["total_hours_worked"] == 3
        assert technician["efficiency_rate"] == pytest.approx(66.67)

        asset = metrics.get_asset_metrics(ASSET_ID, *window)
        assert asset["corrective_count"] == 1
        assert asset["mtbf"] == 45.0
        assert asset["availability"] == 93.75

    def test_backlog_counts_open_orders(self, service, metrics, work_order, manual_order_data):
        service.update(work_order, {"requested_due_date": datetime.utcnow() - timedelta(days=1)}, REQUESTER)
        cancelled = service.create(dict(manual_order_data), REQUESTER)
        service.cancel(cancelled, SUPERVISOR, "Duplicate")

        backlog = metrics.calculate_backlog()
        assert backlog["total_count"] == 1
        assert backlog["overdue_count"] == 1
        assert backlog["by_priority"] == {"normal": 1}
