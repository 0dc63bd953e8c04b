"""Discipline strategy contract for work order services."""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.orm import Session

from .. import models
from ..config import Settings

if TYPE_CHECKING:
    from .work_orders import WorkOrderService


class BaseWorkOrderService(ABC):
    """
    Per-discipline validation and generation rules.

    A discipline service never persists on its own: ``create`` stamps the
    discipline and hands the payload to the lifecycle orchestrator, which
    calls back into ``validate_for_discipline`` before writing.
    """

    def __init__(self, lifecycle: "WorkOrderService"):
        self.lifecycle = lifecycle

    @property
    def db(self) -> Session:
        return self.lifecycle.db

    @property
    def settings(self) -> Settings:
        return self.lifecycle.settings

    @abstractmethod
    def get_discipline(self) -> str:
        """Discipline identifier handled by this service."""

    @abstractmethod
    def validate_for_discipline(
        self,
        data: dict[str, Any],
        exclude_work_order_id: Optional[int] = None,
    ) -> None:
        """
        Validate a work order payload against the discipline rules.

        Args:
            data: Full work order data (merged with current values on update)
            exclude_work_order_id: Order being updated, ignored by uniqueness checks

        Raises:
            ValidationError: If the payload breaks a discipline rule
        """

    @abstractmethod
    def generate_from_source(
        self,
        source_type: str,
        source: Any,
        additional_data: Optional[dict[str, Any]] = None,
        actor_id: Optional[int] = None,
    ) -> models.WorkOrder:
        """Create a work order from an upstream trigger (routine, sensor, ...)."""

    def create(self, data: dict[str, Any], actor_id: int) -> models.WorkOrder:
        payload = dict(data)
        payload["discipline"] = self.get_discipline()
        return self.lifecycle.create(payload, actor_id)
