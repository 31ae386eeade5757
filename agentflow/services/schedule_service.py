from datetime import datetime
from typing import Any, Dict, List, Optional

from agentflow.core.clock import Clock, get_zone
from agentflow.core.errors import InvalidInputError, NotFoundError
from agentflow.core.logging import get_logger, log_fields
from agentflow.engine import cron
from agentflow.models import WorkflowSchedule

logger = get_logger("schedules")


class ScheduleService:
    """Validated schedule writes. Malformed rules are rejected here, never at first fire."""

    def __init__(self, storage, scheduler=None, clock: Optional[Clock] = None):
        self.storage = storage
        self.scheduler = scheduler
        self.clock = clock or Clock()

    @staticmethod
    def validate_rule(cron_expression: str, timezone: str) -> None:
        if not cron.validate(cron_expression):
            raise InvalidInputError(f"Invalid cron expression: {cron_expression}")
        get_zone(timezone)

    async def _notify_scheduler(self) -> None:
        # Pick up the change now instead of waiting for the next reconcile tick
        if self.scheduler is not None and self.scheduler.running:
            await self.scheduler.reconcile()

    async def create_schedule(
        self,
        workflow_id: str,
        cron_expression: str,
        timezone: str = "UTC",
        enabled: bool = True,
    ) -> WorkflowSchedule:
        timezone = timezone or "UTC"
        self.validate_rule(cron_expression, timezone)
        if not await self.storage.get_workflow(workflow_id):
            raise NotFoundError("Workflow not found")

        schedule = await self.storage.create_schedule(workflow_id, cron_expression, timezone, enabled)
        logger.info(
            "Schedule created",
            extra=log_fields(schedule_id=schedule.id, workflow_id=workflow_id, cron_expression=cron_expression, timezone=timezone),
        )
        await self._notify_scheduler()
        return schedule

    async def update_schedule(self, schedule_id: str, fields: Dict[str, Any]) -> WorkflowSchedule:
        schedule = await self.storage.get_schedule_by_id(schedule_id)
        if not schedule:
            raise NotFoundError("Schedule not found")

        allowed = {k: v for k, v in fields.items() if k in ("cron_expression", "timezone", "enabled")}
        self.validate_rule(
            allowed.get("cron_expression", schedule.cron_expression),
            allowed.get("timezone") or schedule.timezone or "UTC",
        )
        if allowed:
            await self.storage.update_schedule(schedule_id, allowed)
            await self._notify_scheduler()
        return await self.storage.get_schedule_by_id(schedule_id)

    async def delete_schedule(self, schedule_id: str) -> None:
        if not await self.storage.delete_schedule(schedule_id):
            raise NotFoundError("Schedule not found")
        await self._notify_scheduler()

    async def upcoming_runs(self, schedule_id: str, count: int = 5) -> List[datetime]:
        schedule = await self.storage.get_schedule_by_id(schedule_id)
        if not schedule:
            raise NotFoundError("Schedule not found")
        return cron.upcoming(schedule.cron_expression, schedule.timezone or "UTC", self.clock.now(), count)

    async def run_now(self, schedule_id: str) -> bool:
        if self.scheduler is None:
            raise InvalidInputError("Scheduler is not available")
        return await self.scheduler.execute_schedule_now(schedule_id)
