"""Maintenance discipline: asset-bound work orders generated from routines."""
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from .. import models, routines
from ..database import atomic
from ..errors import ConfigurationFault, InvalidSourceError, ValidationError
from ..permissions import APPROVE_WORK_ORDERS
from ..sinks import notify
from .base import BaseWorkOrderService

logger = logging.getLogger("cmms-core.maintenance")


class MaintenanceWorkOrderService(BaseWorkOrderService):
    """Validation and generation rules for the maintenance discipline."""

    def get_discipline(self) -> str:
        return models.Discipline.MAINTENANCE

    def validate_for_discipline(
        self,
        data: dict[str, Any],
        exclude_work_order_id: Optional[int] = None,
    ) -> None:
        # Maintenance requires an asset
        asset_id = data.get("asset_id")
        if not asset_id:
            raise ValidationError.for_field("asset_id", "Asset is required for maintenance work orders")
        if self.db.get(models.Asset, asset_id) is None:
            raise ValidationError.for_field("asset_id", f"Asset not found: {asset_id}")

        category_id = data.get("work_order_category_id")
        category = self.db.get(models.WorkOrderCategory, category_id) if category_id else None
        if category is None or category.discipline != models.Discipline.MAINTENANCE:
            raise ValidationError.for_field(
                "work_order_category_id", "Invalid category for maintenance discipline"
            )

        type_id = data.get("work_order_type_id")
        if type_id:
            work_order_type = self.db.get(models.WorkOrderType, type_id)
            if work_order_type is None or work_order_type.work_order_category_id != category.id:
                raise ValidationError.for_field(
                    "work_order_type_id", "Work order type does not belong to the selected category"
                )

        source_type = data.get("source_type")
        if source_type and not category.is_source_allowed(source_type):
            raise ValidationError.for_field("source_type", "Invalid source type for this category")

        if source_type == models.SourceType.ROUTINE:
            self._validate_routine_source(data, exclude_work_order_id)

    def _validate_routine_source(self, data: dict[str, Any], exclude_work_order_id: Optional[int]) -> None:
        source_id = data.get("source_id")
        if not source_id:
            raise InvalidSourceError({"source_id": ["Routine ID is required when source type is routine"]})

        routine = self.db.get(models.Routine, source_id)
        if routine is None:
            raise InvalidSourceError({"source_id": [f"Invalid routine ID: {source_id}"]})

        # At most one active work order per automatic routine
        if routine.execution_mode == models.ExecutionMode.AUTOMATIC and routines.has_open_work_order(
            self.db, routine, exclude_work_order_id=exclude_work_order_id
        ):
            raise ValidationError.for_field("source_id", "This routine already has an active work order")

    def generate_from_source(
        self,
        source_type: str,
        source: Any,
        additional_data: Optional[dict[str, Any]] = None,
        actor_id: Optional[int] = None,
    ) -> models.WorkOrder:
        if source_type == models.SourceType.ROUTINE:
            return self._generate_from_routine(source, additional_data or {}, actor_id)
        if source_type == models.SourceType.SENSOR:
            raise NotImplementedError("Sensor-based work order generation is not implemented")
        if source_type == models.SourceType.INSPECTION:
            raise NotImplementedError("Inspection-based work order generation is not implemented")
        raise ValidationError.for_field("source_type", f"Unsupported source type: {source_type}")

    def _resolve_preventive_classification(self) -> tuple[models.WorkOrderCategory, models.WorkOrderType]:
        category = (
            self.db.query(models.WorkOrderCategory)
            .filter(
                models.WorkOrderCategory.code == models.CategoryCode.PREVENTIVE,
                models.WorkOrderCategory.discipline == models.Discipline.MAINTENANCE,
            )
            .first()
        )
        if category is None:
            raise ConfigurationFault("No preventive category found for maintenance")

        work_order_type = (
            self.db.query(models.WorkOrderType)
            .filter(
                models.WorkOrderType.work_order_category_id == category.id,
                models.WorkOrderType.is_active.is_(True),
            )
            .order_by(models.WorkOrderType.id)
            .first()
        )
        if work_order_type is None:
            raise ConfigurationFault("No active preventive work order type found")

        return category, work_order_type

    def _generate_from_routine(
        self,
        routine: models.Routine,
        additional_data: dict[str, Any],
        actor_id: Optional[int],
    ) -> models.WorkOrder:
        category, work_order_type = self._resolve_preventive_classification()
        actor = actor_id if actor_id is not None else self.settings.system_actor_id

        form_version_id = routine.active_form_version_id
        if form_version_id is None and routine.form is not None:
            form_version_id = routine.form.current_version_id

        data = {
            "title": routines.build_work_order_title(routine),
            "description": routines.build_work_order_description(routine),
            "work_order_category_id": category.id,
            "work_order_type_id": work_order_type.id,
            "priority": routines.get_priority_from_score(routine.priority_score),
            "priority_score": routine.priority_score if routine.priority_score is not None else 50,
            "asset_id": routine.asset_id,
            "form_id": routine.form_id,
            "form_version_id": form_version_id,
            "source_type": models.SourceType.ROUTINE,
            "source_id": routine.id,
            "requested_due_date": datetime.utcnow() + timedelta(hours=self.settings.routine_due_hours),
        }
        data.update(additional_data)

        auto_approved = False
        with atomic(self.db, "generate work order from routine"):
            work_order = self.create(data, actor)

            if routine.auto_approve_work_orders and work_order.type and work_order.type.auto_approve_from_routine:
                if self.lifecycle.permissions.can(actor, APPROVE_WORK_ORDERS):
                    work_order = self.lifecycle.approve(
                        work_order, actor, reason="Auto-approved from routine"
                    )
                    auto_approved = True
                else:
                    logger.warning(
                        f"Routine {routine.id} is set to auto-approve but actor {actor} lacks "
                        f"{APPROVE_WORK_ORDERS}; work order {work_order.work_order_number} left requested"
                    )

        logger.info(
            f"Generated work order {work_order.work_order_number} from routine {routine.id} "
            f"(auto_approved={auto_approved})"
        )
        if auto_approved:
            notify(self.lifecycle.notifier, "work_order_auto_approved", work_order)
        return work_order
