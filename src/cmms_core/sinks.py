"""Fire-and-forget side channels: audit log and notifications.

Failures inside a sink are logged and never propagate, so they cannot roll
back the business transaction that triggered them.
"""
import logging
from typing import Any, Optional

from . import models

logger = logging.getLogger("cmms-core.sinks")
audit_logger = logging.getLogger("cmms-core.audit")


class AuditSink:
    """Receives business events after they are committed."""

    def log(self, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    """Writes audit events to the ``cmms-core.audit`` logger."""

    def log(self, event: str, payload: dict[str, Any]) -> None:
        audit_logger.info(f"{event}: {payload}")


class NotificationSink:
    """Delivers notifications to people affected by a work order change.

    The default implementation does nothing; deployments plug in e-mail,
    push or chat delivery.
    """

    def work_order_scheduled(self, work_order: models.WorkOrder) -> None:
        pass

    def work_order_auto_approved(self, work_order: models.WorkOrder) -> None:
        pass


def emit(sink: Optional[AuditSink], event: str, payload: dict[str, Any]) -> None:
    """Send an audit event, logging instead of raising on sink failure."""
    if sink is None:
        return
    try:
        sink.log(event, payload)
    except Exception:
        logger.exception(f"Audit sink failed for event {event}")


def notify(sink: Optional[NotificationSink], method: str, work_order: models.WorkOrder) -> None:
    """Call a notification hook, logging instead of raising on failure."""
    if sink is None:
        return
    try:
        getattr(sink, method)(work_order)
    except Exception:
        logger.exception(f"Notification {method} failed for work order {work_order.id}")
