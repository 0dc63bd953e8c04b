"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from .models import WorkOrderStatus, ExecutionStatus


# =============================================================================
# Work Orders
# =============================================================================


class WorkOrderCreate(BaseModel):
    """Schema for creating a work order.

    The order starts in ``requested``; the acting user becomes the requester.
    """

    discipline: str = Field("maintenance", description="Discipline whose rules validate the order")
    title: str = Field(..., min_length=1, max_length=255, description="Work order title")
    description: Optional[str] = Field(None, description="Detailed description")
    work_order_category_id: int = Field(..., description="Category (preventive, corrective, ...)")
    work_order_type_id: Optional[int] = Field(None, description="Type refining the category")
    priority: str = Field("normal", description="Priority: low, normal, high, urgent, emergency")
    priority_score: Optional[int] = Field(None, ge=0, le=100, description="Numeric priority 0-100")
    asset_id: Optional[int] = Field(None, description="Target asset (required for maintenance)")
    form_id: Optional[int] = None
    form_version_id: Optional[int] = Field(None, description="Checklist version executed by the order")
    requested_due_date: Optional[datetime] = None
    source_type: Optional[str] = Field(None, description="manual, routine, sensor, inspection, work_order")
    source_id: Optional[int] = Field(None, description="Id of the source entity")
    related_work_order_id: Optional[int] = None
    relationship_type: Optional[str] = Field(None, description="follow_up, prerequisite, related")
    external_reference: Optional[str] = Field(None, max_length=255, description="PO number, ticket id, ...")
    tags: Optional[list[str]] = None


class WorkOrderUpdate(BaseModel):
    """Schema for updating work order fields (status changes use transitions)."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    work_order_category_id: Optional[int] = None
    work_order_type_id: Optional[int] = None
    priority: Optional[str] = None
    priority_score: Optional[int] = Field(None, ge=0, le=100)
    asset_id: Optional[int] = None
    form_id: Optional[int] = None
    form_version_id: Optional[int] = None
    requested_due_date: Optional[datetime] = None
    source_type: Optional[str] = None
    source_id: Optional[int] = None
    actual_parts_cost: Optional[float] = Field(None, ge=0)
    actual_labor_cost: Optional[float] = Field(None, ge=0)
    external_reference: Optional[str] = Field(None, max_length=255)
    tags: Optional[list[str]] = None


class WorkOrderTransition(BaseModel):
    """Schema for a generic status transition."""

    new_status: WorkOrderStatus = Field(..., description="Target status")
    reason: Optional[str] = Field(None, description="Required for rejected, cancelled and on_hold")
    metadata: Optional[dict[str, Any]] = Field(None, description="Details stored on the history row")


class ReasonRequest(BaseModel):
    """Body for reject/cancel/hold (reason required) and approve/verify/close (optional)."""

    reason: Optional[str] = Field(None, description="Justification recorded in the history")


class WorkOrderResume(BaseModel):
    to_status: WorkOrderStatus = Field(..., description="Status to resume into")
    reason: Optional[str] = None


class WorkOrderPlan(BaseModel):
    """Planning estimates; estimated_total_cost is derived as parts + labor."""

    estimated_hours: Optional[float] = Field(None, ge=0)
    estimated_parts_cost: Optional[float] = Field(None, ge=0)
    estimated_labor_cost: Optional[float] = Field(None, ge=0)
    required_skills: Optional[list[str]] = None
    required_certifications: Optional[list[str]] = None
    safety_requirements: Optional[list[str]] = None
    downtime_required: bool = False
    number_of_people: Optional[int] = Field(None, ge=0)


class WorkOrderSchedule(BaseModel):
    scheduled_start_date: datetime
    scheduled_end_date: datetime
    assigned_technician_id: Optional[int] = None
    assigned_team_id: Optional[int] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.scheduled_end_date <= self.scheduled_start_date:
            raise ValueError("scheduled_end_date must be after scheduled_start_date")
        return self


class WorkOrderResponse(BaseModel):
    """Schema for full work order response."""

    id: int
    work_order_number: str
    discipline: str
    title: str
    description: Optional[str] = None
    work_order_category_id: int
    work_order_type_id: Optional[int] = None
    priority: str
    priority_score: int
    status: WorkOrderStatus
    asset_id: Optional[int] = None
    form_id: Optional[int] = None
    form_version_id: Optional[int] = None

    # Planning
    estimated_hours: Optional[float] = None
    estimated_parts_cost: Optional[float] = None
    estimated_labor_cost: Optional[float] = None
    estimated_total_cost: Optional[float] = None
    downtime_required: bool = False
    required_skills: Optional[list[str]] = None
    required_certifications: Optional[list[str]] = None
    safety_requirements: Optional[list[str]] = None
    number_of_people: Optional[int] = None

    # Scheduling
    requested_due_date: Optional[datetime] = None
    scheduled_start_date: Optional[datetime] = None
    scheduled_end_date: Optional[datetime] = None
    assigned_team_id: Optional[int] = None
    assigned_technician_id: Optional[int] = None

    # Actuals
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    actual_hours: Optional[float] = None
    actual_parts_cost: Optional[float] = None
    actual_labor_cost: Optional[float] = None
    actual_total_cost: Optional[float] = None

    # Source and relationships
    source_type: str
    source_id: Optional[int] = None
    related_work_order_id: Optional[int] = None
    relationship_type: Optional[str] = None

    # People and lifecycle stamps
    requested_by: int
    requested_at: datetime
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    planned_by: Optional[int] = None
    planned_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    closed_at: Optional[datetime] = None

    external_reference: Optional[str] = None
    tags: Optional[list[str]] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class WorkOrderListItem(BaseModel):
    """Schema for work order list items (lightweight)."""

    id: int
    work_order_number: str
    title: str
    status: WorkOrderStatus
    priority: str
    priority_score: int
    asset_id: Optional[int] = None
    assigned_technician_id: Optional[int] = None
    requested_due_date: Optional[datetime] = None
    scheduled_start_date: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class WorkOrderListResponse(BaseModel):
    """Schema for paginated work order list."""

    items: list[WorkOrderListItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class StatusHistoryResponse(BaseModel):
    """Schema for status history entries."""

    id: int
    work_order_id: int
    from_status: Optional[WorkOrderStatus] = None
    to_status: WorkOrderStatus
    changed_by: int
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class VarianceSummary(BaseModel):
    estimated: Optional[float] = None
    actual: Optional[float] = None
    variance: Optional[float] = Field(None, description="(actual - estimated) / estimated x 100")


class WorkOrderStatistics(BaseModel):
    status: str
    age_days: int
    overdue: bool
    days_overdue: int
    estimated_vs_actual: dict[str, VarianceSummary]
    completion_percentage: float


# =============================================================================
# Execution
# =============================================================================


class ExecutionStart(BaseModel):
    work_order_id: int = Field(..., description="Scheduled or in-progress work order")
    technician_id: Optional[int] = Field(None, description="Defaults to the acting user")


class TaskResponseSubmit(BaseModel):
    task_id: int = Field(..., description="Form task being answered")
    response: Optional[str] = None
    response_data: Optional[dict[str, Any]] = None


class ExecutionComplete(BaseModel):
    work_performed: Optional[str] = None
    observations: Optional[str] = None
    recommendations: Optional[str] = None
    safety_checks_completed: bool = False
    quality_checks_completed: bool = False
    area_cleaned: bool = False
    tools_returned: bool = False
    follow_up_required: bool = False
    follow_up_description: Optional[str] = Field(
        None, description="Creates a corrective follow-up order when follow_up_required is set"
    )


class ExecutionResponse(BaseModel):
    id: int
    work_order_id: int
    executed_by: int
    status: ExecutionStatus
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_pause_minutes: float = 0.0
    safety_checks_completed: bool = False
    quality_checks_completed: bool = False
    area_cleaned: bool = False
    tools_returned: bool = False
    follow_up_required: bool = False
    work_performed: Optional[str] = None
    observations: Optional[str] = None
    recommendations: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskResponseResponse(BaseModel):
    id: int
    work_order_execution_id: int
    form_task_id: int
    user_id: int
    response: Optional[str] = None
    response_data: Optional[dict[str, Any]] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExecutionStats(BaseModel):
    total_tasks: int
    completed_tasks: int
    required_tasks: int
    completed_required_tasks: int
    completion_percentage: float
    actual_duration: Optional[float] = Field(None, description="Working minutes, pauses excluded")
    status: str


# =============================================================================
# Scheduling
# =============================================================================


class ScheduleBatchEntry(BaseModel):
    work_order_id: int
    start_date: datetime
    end_date: datetime
    technician_id: Optional[int] = None
    team_id: Optional[int] = None


class ScheduleBatchRequest(BaseModel):
    entries: list[ScheduleBatchEntry] = Field(..., min_length=1)


class ScheduleBatchResult(BaseModel):
    work_order_id: int
    result: str = Field(..., description="scheduled, rescheduled, updated or skipped")
    reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    technician_id: int
    available: bool
    conflicts: list[WorkOrderListItem]
    workload_hours: float


class OptimizeScheduleRequest(BaseModel):
    work_order_ids: list[int] = Field(..., min_length=1)
    technician_ids: list[int] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime


class ProposedSlot(BaseModel):
    work_order_id: int
    technician_id: int
    start_date: datetime
    end_date: datetime


class OptimizeScheduleResponse(BaseModel):
    schedule: list[ProposedSlot]
    technician_workloads: dict[int, float]
    unscheduled: list[int]
    unscheduled_count: int


# =============================================================================
# Generation
# =============================================================================


class GenerateForRoutineRequest(BaseModel):
    due_date: Optional[datetime] = Field(None, description="Forces generation when the routine is not due")


class GenerationFailure(BaseModel):
    routine_id: int
    error: str


class GenerationSkip(BaseModel):
    routine_id: int
    reasons: list[str]


class GenerationResultResponse(BaseModel):
    generated: list[WorkOrderListItem]
    skipped: list[GenerationSkip]
    failures: list[GenerationFailure]


class UpcomingWorkOrder(BaseModel):
    routine_id: int
    routine_name: str
    asset_id: int
    asset_tag: Optional[str] = None
    due_date: datetime
    days_until_due: int
    priority: str
