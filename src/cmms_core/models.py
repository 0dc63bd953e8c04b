"""SQLAlchemy database models."""
from datetime import datetime
from typing import Optional
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    JSON,
    UniqueConstraint,
    Index,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, object_session

from .errors import HistoryImmutableError

# Base class for all models
Base = declarative_base()


class WorkOrderStatus(str, enum.Enum):
    """Lifecycle status enum for work orders.

    Happy path: requested -> approved -> planned -> scheduled -> in_progress
    -> completed -> verified -> closed.

    Terminal states: rejected, closed, cancelled
    """

    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PLANNED = "planned"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ExecutionStatus(str, enum.Enum):
    """Status of the hands-on execution of a work order."""

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"


class Discipline:
    """Known work order disciplines."""
    MAINTENANCE = "maintenance"
    QUALITY = "quality"


class SourceType:
    """Upstream triggers a work order can originate from."""
    MANUAL = "manual"
    ROUTINE = "routine"
    SENSOR = "sensor"
    INSPECTION = "inspection"
    WORK_ORDER = "work_order"


class CategoryCode:
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"


class ExecutionMode:
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class TriggerType:
    RUNTIME_HOURS = "runtime_hours"
    CALENDAR_DAYS = "calendar_days"


class RelationshipType:
    FOLLOW_UP = "follow_up"
    PREREQUISITE = "prerequisite"
    RELATED = "related"


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(enum_cls, values_callable=lambda x: [e.value for e in x]),
        **kwargs
    )


# =============================================================================
# Reference data (owned by other subsystems, read by the work-order engine)
# =============================================================================


class User(Base):
    """User model (actors, requesters, technicians)."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Asset(Base):
    """Equipment that maintenance work is performed on."""

    __tablename__ = "assets"

    id = Column(Integer, primary_key=True)
    tag = Column(String(100), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    current_runtime_hours = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class WorkOrderCategory(Base):
    """First-level classification of a work order within a discipline."""

    __tablename__ = "work_order_categories"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    discipline = Column(String(50), nullable=False, default=Discipline.MAINTENANCE, index=True)
    allowed_source_types = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    types = relationship("WorkOrderType", back_populates="category")

    __table_args__ = (
        UniqueConstraint("discipline", "code", name="uq_work_order_category_discipline_code"),
    )

    def get_allowed_source_types(self) -> list[str]:
        return list(self.allowed_source_types or [SourceType.MANUAL])

    def is_source_allowed(self, source_type: str) -> bool:
        return source_type in self.get_allowed_source_types()


class WorkOrderType(Base):
    """Second-level classification refining a category (e.g. lubrication PM)."""

    __tablename__ = "work_order_types"

    id = Column(Integer, primary_key=True)
    work_order_category_id = Column(Integer, ForeignKey("work_order_categories.id"), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    auto_approve_from_routine = Column(Boolean, nullable=False, default=False)

    category = relationship("WorkOrderCategory", back_populates="types")


class Form(Base):
    """Checklist definition executed by a work order."""

    __tablename__ = "forms"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    current_version_id = Column(Integer, nullable=True)


class FormVersion(Base):
    __tablename__ = "form_versions"

    id = Column(Integer, primary_key=True)
    form_id = Column(Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False, default=1)

    form = relationship("Form")
    tasks = relationship("FormTask", back_populates="form_version", order_by="FormTask.position")


class FormTask(Base):
    __tablename__ = "form_tasks"

    id = Column(Integer, primary_key=True)
    form_version_id = Column(Integer, ForeignKey("form_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    task_type = Column(String(50), nullable=False, default="checkbox")
    is_required = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)

    form_version = relationship("FormVersion", back_populates="tasks")


class Routine(Base):
    """Preventive maintenance routine attached to an asset.

    Routines are triggered either by accumulated runtime hours or by
    calendar days since the last completed execution. In ``automatic``
    execution mode the generation job creates work orders for them.
    """

    __tablename__ = "routines"

    id = Column(Integer, primary_key=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    trigger_type = Column(String(20), nullable=False, default=TriggerType.CALENDAR_DAYS)
    trigger_runtime_hours = Column(Integer, nullable=True)
    trigger_calendar_days = Column(Integer, nullable=True)
    execution_mode = Column(String(20), nullable=False, default=ExecutionMode.AUTOMATIC)
    advance_generation_hours = Column(Integer, nullable=False, default=24)
    auto_approve_work_orders = Column(Boolean, nullable=False, default=False)
    priority_score = Column(Integer, nullable=True, default=50)

    last_execution_runtime_hours = Column(Float, nullable=True)
    last_execution_completed_at = Column(DateTime, nullable=True)

    form_id = Column(Integer, ForeignKey("forms.id"), nullable=True)
    active_form_version_id = Column(Integer, ForeignKey("form_versions.id"), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    asset = relationship("Asset")
    form = relationship("Form")


# =============================================================================
# Work Orders
# =============================================================================


class WorkOrder(Base):
    """
    Work order model: the unit of maintenance work.

    An order is classified by discipline, category and type, targets an
    asset, and moves through the lifecycle enforced by the state machine.
    Every status change is recorded in WorkOrderStatusHistory.
    """

    __tablename__ = "work_orders"

    id = Column(Integer, primary_key=True)
    work_order_number = Column(String(30), unique=True, nullable=False, index=True)  # e.g., WO-2025-07-00012
    discipline = Column(String(50), nullable=False, default=Discipline.MAINTENANCE, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Classification
    work_order_category_id = Column(Integer, ForeignKey("work_order_categories.id"), nullable=False, index=True)
    work_order_type_id = Column(Integer, ForeignKey("work_order_types.id"), nullable=True)
    priority = Column(String(20), nullable=False, default="normal")
    priority_score = Column(Integer, nullable=False, default=50)
    status = _enum_column(
        WorkOrderStatus,
        nullable=False,
        default=WorkOrderStatus.REQUESTED,
        index=True,
    )

    # Target
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True, index=True)
    form_id = Column(Integer, ForeignKey("forms.id"), nullable=True)
    form_version_id = Column(Integer, ForeignKey("form_versions.id"), nullable=True)

    # Planning
    estimated_hours = Column(Float, nullable=True)
    estimated_parts_cost = Column(Float, nullable=True)
    estimated_labor_cost = Column(Float, nullable=True)
    estimated_total_cost = Column(Float, nullable=True)
    downtime_required = Column(Boolean, nullable=False, default=False)
    safety_requirements = Column(JSON, nullable=True)
    required_skills = Column(JSON, nullable=True)
    required_certifications = Column(JSON, nullable=True)
    number_of_people = Column(Integer, nullable=True)

    # Scheduling and assignment
    requested_due_date = Column(DateTime, nullable=True, index=True)
    scheduled_start_date = Column(DateTime, nullable=True)
    scheduled_end_date = Column(DateTime, nullable=True)
    assigned_team_id = Column(Integer, nullable=True)
    assigned_technician_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Execution tracking
    actual_start_date = Column(DateTime, nullable=True)
    actual_end_date = Column(DateTime, nullable=True)
    actual_hours = Column(Float, nullable=True)
    actual_parts_cost = Column(Float, nullable=True)
    actual_labor_cost = Column(Float, nullable=True)
    actual_total_cost = Column(Float, nullable=True)

    # Source tracking (polymorphic: routine, sensor, inspection, manual, work_order)
    source_type = Column(String(50), nullable=False, default=SourceType.MANUAL)
    source_id = Column(Integer, nullable=True)

    # Flat relationships between orders (follow_up, prerequisite, related)
    related_work_order_id = Column(Integer, ForeignKey("work_orders.id"), nullable=True, index=True)
    relationship_type = Column(String(50), nullable=True)

    # People
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    planned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    closed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Lifecycle timestamps
    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    approved_at = Column(DateTime, nullable=True)
    planned_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    # Metadata
    external_reference = Column(String(255), nullable=True)  # PO number, ticket ID, etc
    tags = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    category = relationship("WorkOrderCategory")
    type = relationship("WorkOrderType")
    asset = relationship("Asset")
    form_version = relationship("FormVersion")
    assigned_technician = relationship("User", foreign_keys=[assigned_technician_id])
    requester = relationship("User", foreign_keys=[requested_by])
    status_history = relationship(
        "WorkOrderStatusHistory",
        back_populates="work_order",
        order_by=lambda: [WorkOrderStatusHistory.created_at, WorkOrderStatusHistory.id],
    )
    execution = relationship("WorkOrderExecution", back_populates="work_order", uselist=False)
    related_to = relationship("WorkOrder", remote_side=[id], foreign_keys=[related_work_order_id])

    __table_args__ = (
        Index("idx_work_orders_source", "source_type", "source_id"),
        Index("idx_work_orders_discipline_status", "discipline", "status"),
        Index("idx_work_orders_schedule", "scheduled_start_date", "scheduled_end_date"),
    )

    @property
    def category_code(self) -> Optional[str]:
        return self.category.code if self.category else None

    def is_preventive(self) -> bool:
        return self.category_code == CategoryCode.PREVENTIVE

    def is_corrective(self) -> bool:
        return self.category_code == CategoryCode.CORRECTIVE

    def is_from_routine(self) -> bool:
        return self.source_type == SourceType.ROUTINE

    def get_tasks(self) -> list["FormTask"]:
        """Tasks of the checklist this order executes (empty without a form version)."""
        if self.form_version is None:
            return []
        return list(self.form_version.tasks)


class WorkOrderStatusHistory(Base):
    """Append-only record of every work order status change.

    ``from_status`` is NULL only for the creation row. Rows are never
    updated or deleted once flushed.
    """

    __tablename__ = "work_order_status_history"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id"), nullable=False, index=True)
    from_status = _enum_column(WorkOrderStatus, nullable=True)
    to_status = _enum_column(WorkOrderStatus, nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(Text, nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    work_order = relationship("WorkOrder", back_populates="status_history")


@event.listens_for(WorkOrderStatusHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise HistoryImmutableError(f"Status history row {target.id} cannot be modified")


@event.listens_for(WorkOrderStatusHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise HistoryImmutableError(f"Status history row {target.id} cannot be deleted")


class WorkOrderExecution(Base):
    """Hands-on execution of a work order by a technician (1:0..1)."""

    __tablename__ = "work_order_executions"

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id"), nullable=False, unique=True)
    executed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = _enum_column(ExecutionStatus, nullable=False, default=ExecutionStatus.ASSIGNED)

    started_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    resumed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    total_pause_minutes = Column(Float, nullable=False, default=0.0)

    # Completion checklist
    safety_checks_completed = Column(Boolean, nullable=False, default=False)
    quality_checks_completed = Column(Boolean, nullable=False, default=False)
    area_cleaned = Column(Boolean, nullable=False, default=False)
    tools_returned = Column(Boolean, nullable=False, default=False)
    follow_up_required = Column(Boolean, nullable=False, default=False)

    work_performed = Column(Text, nullable=True)
    observations = Column(Text, nullable=True)
    recommendations = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    work_order = relationship("WorkOrder", back_populates="execution")
    task_responses = relationship("TaskResponse", back_populates="execution")

    def answered_task_ids(self) -> set[int]:
        return {response.form_task_id for response in self.task_responses}

    def missing_required_task_ids(self) -> list[int]:
        """Required checklist tasks without a response, in checklist order."""
        answered = self.answered_task_ids()
        return [
            task.id for task in self.work_order.get_tasks()
            if task.is_required and task.id not in answered
        ]

    def can_complete(self) -> bool:
        return not self.missing_required_task_ids()

    @property
    def completion_percentage(self) -> float:
        """Share of required tasks answered (100 when nothing is required)."""
        required = [task for task in self.work_order.get_tasks() if task.is_required]
        if not required:
            return 100.0
        answered = self.answered_task_ids()
        done = sum(1 for task in required if task.id in answered)
        return round(done / len(required) * 100, 2)

    def actual_duration_minutes(self, now: Optional[datetime] = None) -> Optional[float]:
        """Working minutes since start, pauses excluded; None before start."""
        if self.started_at is None:
            return None
        if self.completed_at is not None:
            end = self.completed_at
        elif self.status == ExecutionStatus.PAUSED and self.paused_at is not None:
            end = self.paused_at
        else:
            end = now or datetime.utcnow()
        elapsed = (end - self.started_at).total_seconds() / 60
        return round(max(0.0, elapsed - (self.total_pause_minutes or 0.0)), 2)


class TaskResponse(Base):
    """Technician's answer to one checklist task during an execution."""

    __tablename__ = "task_responses"

    id = Column(Integer, primary_key=True)
    work_order_execution_id = Column(
        Integer, ForeignKey("work_order_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    form_task_id = Column(Integer, ForeignKey("form_tasks.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    response = Column(Text, nullable=True)
    response_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    execution = relationship("WorkOrderExecution", back_populates="task_responses")
    form_task = relationship("FormTask")

    __table_args__ = (
        UniqueConstraint("work_order_execution_id", "form_task_id", name="uq_task_response_execution_task"),
    )
