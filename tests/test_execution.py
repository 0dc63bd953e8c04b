"""Tests for work order execution."""
from datetime import datetime, timedelta

import pytest
from conftest import (
    CORRECTIVE_CATEGORY,
    CORRECTIVE_TYPE,
    OPTIONAL_TASK,
    REQUIRED_TASKS,
    SUPERVISOR,
    TECHNICIAN,
)

from cmms_core import models
from cmms_core.errors import IncompleteTasksError, InvalidTransitionError, NotFoundError
from cmms_core.models import ExecutionStatus, WorkOrderStatus
from cmms_core.services import WorkOrderExecutionService


@pytest.fixture
def executions(service):
    return WorkOrderExecutionService(service)


@pytest.fixture
def execution(executions, scheduled_order):
    return executions.start_execution(scheduled_order, TECHNICIAN)


def _answer_required(executions, execution):
    for task_id in REQUIRED_TASKS:
        executions.submit_task_response(execution, task_id, "ok", TECHNICIAN)


class TestStartExecution:
    """Test starting an execution."""

    def test_start_moves_order_in_progress(self, service, execution, scheduled_order):
        assert execution.status == ExecutionStatus.IN_PROGRESS
        assert execution.started_at is not None
        assert execution.executed_by == TECHNICIAN

        work_order = service.get_work_order(scheduled_order.id)
        assert work_order.status == WorkOrderStatus.IN_PROGRESS
        last = service.get_status_history(work_order)[-1]
        assert last.reason == "Execution started"
        assert last.details == {"execution_id": execution.id}

    def test_start_requires_scheduled_order(self, executions, work_order):
        with pytest.raises(InvalidTransitionError):
            executions.start_execution(work_order, TECHNICIAN)
        assert work_order.execution is None

    def test_cannot_start_twice(self, executions, execution, scheduled_order):
        with pytest.raises(InvalidTransitionError):
            executions.start_execution(scheduled_order, TECHNICIAN)

    def test_paused_execution_is_not_restarted(self, executions, execution, scheduled_order):
        """Test that starting a paused execution keeps the work already recorded."""
        start = execution.started_at
        executions.pause_execution(execution, TECHNICIAN, now=start + timedelta(hours=2))

        with pytest.raises(InvalidTransitionError):
            executions.start_execution(scheduled_order, TECHNICIAN, now=start + timedelta(hours=3))
        assert execution.started_at == start
        assert execution.status == ExecutionStatus.PAUSED

        executions.resume_execution(execution, TECHNICIAN, now=start + timedelta(hours=3))
        assert execution.actual_duration_minutes(now=start + timedelta(hours=4)) == pytest.approx(180)

    def test_get_missing_execution(self, executions):
        with pytest.raises(NotFoundError):
            executions.get_execution(999)


class TestPauseResume:
    """Test pause accounting."""

    def test_pause_time_is_excluded_from_duration(self, executions, execution):
        start = execution.started_at
        executions.pause_execution(execution, TECHNICIAN, now=start + timedelta(minutes=30))
        assert execution.status == ExecutionStatus.PAUSED

        executions.resume_execution(execution, TECHNICIAN, now=start + timedelta(minutes=50))
        assert execution.status == ExecutionStatus.IN_PROGRESS
        assert execution.total_pause_minutes == pytest.approx(20)

        assert execution.actual_duration_minutes(now=start + timedelta(minutes=90)) == pytest.approx(70)

    def test_cannot_pause_twice(self, executions, execution):
        executions.pause_execution(execution, TECHNICIAN)
        with pytest.raises(InvalidTransitionError):
            executions.pause_execution(execution, TECHNICIAN)


class TestTaskResponses:
    """Test checklist answers."""

    def test_resubmitting_overwrites(self, db, executions, execution):
        executions.submit_task_response(execution, REQUIRED_TASKS[0], "leaking", TECHNICIAN)
        executions.submit_task_response(execution, REQUIRED_TASKS[0], "fixed", TECHNICIAN, {"torque": 12})

        rows = db.query(models.TaskResponse).filter_by(work_order_execution_id=execution.id).all()
        assert len(rows) == 1
        assert rows[0].response == "fixed"
        assert rows[0].response_data == {"torque": 12}

    def test_task_must_belong_to_checklist(self, db, executions, execution):
        other_version = models.FormVersion(form_id=1, version_number=2)
        db.add(other_version)
        db.flush()
        foreign_task = models.FormTask(form_version_id=other_version.id, description="Other", position=1)
        db.add(foreign_task)
        db.commit()

        with pytest.raises(NotFoundError):
            executions.submit_task_response(execution, foreign_task.id, "ok", TECHNICIAN)

    def test_stats_track_progress(self, executions, execution):
        executions.submit_task_response(execution, REQUIRED_TASKS[0], "ok", TECHNICIAN)
        executions.submit_task_response(execution, OPTIONAL_TASK, "photo.jpg", TECHNICIAN)

        stats = executions.get_execution_stats(execution)
        assert stats["total_tasks"] == 3
        assert stats["completed_tasks"] == 2
        assert stats["required_tasks"] == 2
        assert stats["completed_required_tasks"] == 1
        assert stats["completion_percentage"] == 50.0
        assert stats["status"] == "in_progress"


class TestCompleteExecution:
    """Test completion and follow-up orders."""

    def test_incomplete_required_tasks_block_completion(self, service, executions, execution):
        executions.submit_task_response(execution, REQUIRED_TASKS[0], "ok", TECHNICIAN)

        with pytest.raises(IncompleteTasksError) as exc_info:
            executions.complete_execution(execution, {}, TECHNICIAN)

        assert exc_info.value.missing_task_ids == [REQUIRED_TASKS[1]]
        assert execution.status == ExecutionStatus.IN_PROGRESS
        assert service.get_work_order(execution.work_order_id).status == WorkOrderStatus.IN_PROGRESS

    def test_complete_closes_out_order(self, service, executions, execution):
        _answer_required(executions, execution)
        finished = execution.started_at + timedelta(hours=2)

        executions.complete_execution(execution, {
            "work_performed": "Replaced seal",
            "safety_checks_completed": True,
        }, TECHNICIAN, now=finished)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.completed_at == finished
        assert execution.safety_checks_completed is True
        assert execution.area_cleaned is False

        work_order = service.get_work_order(execution.work_order_id)
        assert work_order.status == WorkOrderStatus.COMPLETED
        assert work_order.actual_end_date == finished
        assert work_order.actual_hours == 2.0

    def test_completed_execution_rejects_task_changes(self, executions, execution):
        _answer_required(executions, execution)
        executions.complete_execution(execution, {}, TECHNICIAN)

        with pytest.raises(InvalidTransitionError):
            executions.submit_task_response(execution, REQUIRED_TASKS[0], "changed", TECHNICIAN)

    def test_follow_up_order_created(self, service, executions, execution, scheduled_order):
        _answer_required(executions, execution)
        executions.complete_execution(execution, {
            "follow_up_required": True,
            "follow_up_description": "Bearing noise, replace at next stop",
        }, TECHNICIAN)

        follow_ups = executions.get_follow_up_work_orders(scheduled_order)
        assert len(follow_ups) == 1
        follow_up = follow_ups[0]
        assert follow_up.title == f"Follow-up: {scheduled_order.title}"
        assert follow_up.status == WorkOrderStatus.REQUESTED
        assert follow_up.work_order_category_id == CORRECTIVE_CATEGORY
        assert follow_up.work_order_type_id == CORRECTIVE_TYPE
        assert follow_up.source_type == "work_order"
        assert follow_up.source_id == scheduled_order.id
        assert follow_up.relationship_type == "follow_up"
        assert follow_up.requested_by == TECHNICIAN

    def test_no_follow_up_without_description(self, executions, execution, scheduled_order):
        _answer_required(executions, execution)
        executions.complete_execution(execution, {"follow_up_required": True}, TECHNICIAN)
        assert executions.get_follow_up_work_orders(scheduled_order) == []

    def test_statistics_report_checklist_progress(self, service, executions, execution, scheduled_order):
        _answer_required(executions, execution)
        stats = service.get_statistics(service.get_work_order(scheduled_order.id), now=datetime.utcnow())
        assert stats["completion_percentage"] == 100.0

    def test_verify_and_close_after_completion(self, service, executions, execution):
        _answer_required(executions, execution)
        executions.complete_execution(execution, {}, TECHNICIAN)

        work_order = service.get_work_order(execution.work_order_id)
        service.verify(work_order, SUPERVISOR, notes="Checked on site")
        service.close(work_order, SUPERVISOR)
        assert work_order.status == WorkOrderStatus.CLOSED
        assert work_order.verified_by == SUPERVISOR
        assert work_order.closed_by == SUPERVISOR
