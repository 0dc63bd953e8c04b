"""Work order services."""

from .base import BaseWorkOrderService
from .maintenance import MaintenanceWorkOrderService
from .work_orders import WorkOrderService
from .execution import WorkOrderExecutionService
from .scheduling import WorkOrderSchedulingService
from .generation import GenerationResult, WorkOrderGenerationService
from .metrics import WorkOrderMetricsService

__all__ = [
    "BaseWorkOrderService",
    "MaintenanceWorkOrderService",
    "WorkOrderService",
    "WorkOrderExecutionService",
    "WorkOrderSchedulingService",
    "WorkOrderGenerationService",
    "GenerationResult",
    "WorkOrderMetricsService",
]
