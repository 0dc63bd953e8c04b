"""Error taxonomy for the work-order engine.

Callers distinguish failures by type rather than by message:

- ValidationError: caller input is wrong or incomplete (field-level messages)
- InvalidTransitionError: a business rule forbids the requested change
- NotFoundError: a referenced id does not resolve
- ConfigurationFault: operator setup is broken (missing category/type)

Every class carries an HTTP status hint used by the API layer.
"""
from typing import Any, Optional


class WorkOrderError(Exception):
    """Base class for all work-order engine errors."""

    code = "work_order_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class ValidationError(WorkOrderError):
    """Raised when submitted data fails validation.

    ``errors`` maps a field name to the list of messages for that field.
    """

    code = "validation_error"
    status_code = 422

    def __init__(self, errors: dict[str, list[str]], message: Optional[str] = None):
        if message is None:
            message = "; ".join(
                f"{field}: {msg}" for field, messages in errors.items() for msg in messages
            )
        super().__init__(message)
        self.errors = errors

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class InvalidSourceError(ValidationError):
    """Raised when source_type/source_id do not resolve to a usable source."""

    code = "invalid_source"


class InvalidTransitionError(WorkOrderError):
    """Raised when an invalid state transition is attempted."""

    code = "invalid_transition"
    status_code = 409

    def __init__(
        self,
        message: str,
        current_status: Optional[Any] = None,
        requested_status: Optional[Any] = None,
        allowed_transitions: Optional[list[Any]] = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.current_status is not None:
            data["current_status"] = getattr(self.current_status, "value", self.current_status)
        if self.requested_status is not None:
            data["requested_status"] = getattr(self.requested_status, "value", self.requested_status)
        data["allowed_transitions"] = [getattr(s, "value", s) for s in self.allowed_transitions]
        return data


class IncompleteTasksError(InvalidTransitionError):
    """Raised when an execution is completed with required tasks unanswered."""

    code = "incomplete_tasks"

    def __init__(self, message: str, missing_task_ids: Optional[list[int]] = None):
        super().__init__(message)
        self.missing_task_ids = missing_task_ids or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["missing_task_ids"] = self.missing_task_ids
        return data


class NotFoundError(WorkOrderError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class ConfigurationFault(WorkOrderError):
    """Raised when required reference data is missing or misconfigured."""

    code = "configuration_fault"
    status_code = 500


class HistoryImmutableError(WorkOrderError):
    """Raised when code attempts to modify or delete a status history row."""

    code = "history_immutable"
    status_code = 500
