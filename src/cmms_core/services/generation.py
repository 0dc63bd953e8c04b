"""Work order generation from maintenance routines."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from .. import models, routines
from ..errors import ValidationError
from .work_orders import WorkOrderService

logger = logging.getLogger("cmms-core.generation")


@dataclass
class GenerationResult:
    """Outcome of a batch generation run."""

    generated: list[models.WorkOrder] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def generated_count(self) -> int:
        return len(self.generated)


def preview_priority(days_until_due: int) -> str:
    """Priority bucket for an upcoming routine: overdue is urgent."""
    if days_until_due < 0:
        return "urgent"
    elif days_until_due <= 3:
        return "high"
    elif days_until_due <= 7:
        return "normal"
    return "low"


class WorkOrderGenerationService:
    """
    Creates preventive work orders for routines that come due.

    ``generate_due_work_orders`` is meant to be run by an external periodic
    job. Each routine is generated in its own transaction; a failure is
    logged and recorded, and the batch moves on.
    """

    def __init__(self, work_orders: WorkOrderService):
        self.work_orders = work_orders
        self.db = work_orders.db
        self.settings = work_orders.settings

    def _skip_reasons(self, routine: models.Routine, now: datetime) -> list[str]:
        reasons = []
        if not routine.is_active:
            reasons.append("Routine is inactive")

        open_order = routines.get_open_work_order(self.db, routine)
        if open_order is not None:
            reasons.append(
                f"Open work order exists: {open_order.work_order_number} (status: {open_order.status.value})"
            )

        hours_until_due = routines.calculate_hours_until_due(routine, now)
        if hours_until_due is None:
            reasons.append("No trigger interval configured")
        elif hours_until_due > (routine.advance_generation_hours or 24):
            reasons.append(
                f"Not yet due: {hours_until_due:.1f} hours until due "
                f"(advance window: {routine.advance_generation_hours}h)"
            )

        return reasons or ["Unknown reason"]

    def _generate(
        self,
        routine_list: Iterable[models.Routine],
        actor_id: Optional[int],
        now: datetime,
        check_due: bool,
    ) -> GenerationResult:
        result = GenerationResult()
        for routine in routine_list:
            try:
                if check_due and not routines.should_generate_work_order(self.db, routine, now):
                    reasons = self._skip_reasons(routine, now)
                    logger.info(f"Skipped routine {routine.id} ({routine.name}): {'; '.join(reasons)}")
                    result.skipped.append({"routine_id": routine.id, "reasons": reasons})
                    continue

                work_order = routines.generate_work_order(
                    self.db,
                    routine,
                    actor_id=actor_id,
                    due_date=routines.calculate_due_date(routine, now),
                    service=self.work_orders,
                )
                result.generated.append(work_order)
                logger.info(
                    f"Generated work order {work_order.work_order_number} from routine {routine.id} "
                    f"({routine.trigger_type}: {routines.interval_label(routine)}, asset {routine.asset_id})"
                )
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to generate work order from routine {routine.id}: {e}", exc_info=True)
                result.failures.append({"routine_id": routine.id, "error": str(e)})

        logger.info(
            f"Generation run finished: {len(result.generated)} generated, "
            f"{len(result.skipped)} skipped, {len(result.failures)} failed"
        )
        return result

    def generate_due_work_orders(
        self,
        actor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> GenerationResult:
        """
        Generate work orders for every active automatic routine that is due.

        Args:
            actor_id: Acting user; the configured system actor when None
            now: Reference time (defaults to now)

        Returns:
            GenerationResult with generated orders, skipped routines and failures
        """
        if now is None:
            now = datetime.utcnow()

        candidates = routines.get_active_routines(self.db, automatic_only=True)
        logger.info(f"Found {len(candidates)} active automatic routines")
        return self._generate(candidates, actor_id, now, check_due=True)

    def generate_for_routines(
        self,
        routine_list: Iterable[models.Routine],
        actor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> GenerationResult:
        """Generate for the given routines that are due, isolating per-routine failures."""
        return self._generate(routine_list, actor_id, now or datetime.utcnow(), check_due=True)

    def generate_for_routine(
        self,
        routine: models.Routine,
        due_date: Optional[datetime] = None,
        actor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> models.WorkOrder:
        """
        Generate a work order for one routine.

        Without an explicit ``due_date`` the routine must be due; passing a
        due date forces generation.

        Raises:
            ValidationError: If the routine is not due and no due date was given
        """
        if now is None:
            now = datetime.utcnow()

        if due_date is None:
            if not routines.should_generate_work_order(self.db, routine, now):
                reasons = self._skip_reasons(routine, now)
                raise ValidationError(
                    {"due_date": [f"Routine {routine.id} is not due ({'; '.join(reasons)}); supply a due date to generate anyway"]}
                )
            due_date = routines.calculate_due_date(routine, now)

        return routines.generate_work_order(
            self.db, routine, actor_id=actor_id, due_date=due_date, service=self.work_orders
        )

    def preview_upcoming_work_orders(
        self,
        days_ahead: int = 30,
        now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """
        Preview the routines coming due within ``days_ahead`` days.

        Routines with an open work order are left out. Rows are sorted by due
        date, overdue routines first.
        """
        if now is None:
            now = datetime.utcnow()
        horizon = now + timedelta(days=days_ahead)

        preview = []
        for routine in routines.get_active_routines(self.db):
            due_date = routines.get_next_due_date(routine, now)
            if due_date > horizon or routines.has_open_work_order(self.db, routine):
                continue

            days_until_due = (due_date - now).days
            preview.append({
                "routine_id": routine.id,
                "routine_name": routine.name,
                "asset_id": routine.asset_id,
                "asset_tag": routine.asset.tag if routine.asset else None,
                "due_date": due_date,
                "days_until_due": days_until_due,
                "priority": preview_priority(days_until_due),
            })

        preview.sort(key=lambda row: row["due_date"])
        return preview
