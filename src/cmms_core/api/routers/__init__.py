"""API routers for CMMS Core."""

from . import work_orders, executions, scheduling, generation, metrics

__all__ = ["work_orders", "executions", "scheduling", "generation", "metrics"]
