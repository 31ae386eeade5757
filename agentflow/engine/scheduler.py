"""Schedule registry: keeps one armed cron timer per enabled schedule.

A single interval timer drives ``reconcile()``, which aligns the armed
timers with the persisted set of enabled schedules. Each cron fire runs as
its own task so long dispatches never block the reconcile loop or other
schedules.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Set
import asyncio

from agentflow.config import settings
from agentflow.core.clock import Clock, get_zone
from agentflow.core.errors import InvalidInputError, NotFoundError
from agentflow.core.logging import get_logger, log_fields
from agentflow.engine.cron import validate
from agentflow.engine.timers import CronTimer, IntervalTimer, Timer
from agentflow.integrations.broadcast import Broadcaster, LoggingBroadcaster
from agentflow.integrations.dispatcher import BaseExecutionDispatcher

logger = get_logger("scheduler")

TimerFactory = Callable[[Any, Callable[[], None]], Timer]
IntervalTimerFactory = Callable[[float, Callable[[], None]], Timer]


@dataclass
class ArmedSchedule:
    schedule_id: str
    workflow_id: str
    cron_expression: str
    timezone: str
    timer: Timer


class WorkflowScheduler:
    def __init__(
        self,
        storage,
        dispatcher: BaseExecutionDispatcher,
        clock: Optional[Clock] = None,
        broadcaster: Optional[Broadcaster] = None,
        timer_factory: Optional[TimerFactory] = None,
        interval_timer_factory: Optional[IntervalTimerFactory] = None,
        reconcile_interval: float = settings.SCHEDULE_RECONCILE_INTERVAL,
        execution_timeout: float = settings.SCHEDULE_EXECUTION_TIMEOUT,
    ):
        self.storage = storage
        self.dispatcher = dispatcher
        self.clock = clock or Clock()
        self.broadcaster = broadcaster or LoggingBroadcaster()
        self._timer_factory = timer_factory or self._default_timer
        self._interval_timer_factory = interval_timer_factory or IntervalTimer
        self.reconcile_interval = reconcile_interval
        self.execution_timeout = timedelta(seconds=execution_timeout)

        self._armed: Dict[str, ArmedSchedule] = {}
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._reconcile_timer: Optional[Timer] = None
        self._reconciling = False
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def armed(self) -> Dict[str, ArmedSchedule]:
        return dict(self._armed)

    def _default_timer(self, schedule, callback: Callable[[], None]) -> Timer:
        tz = schedule.timezone or "UTC"
        get_zone(tz)
        return CronTimer(schedule.cron_expression, tz, callback, clock=self.clock)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start(self) -> None:
        if self._running:
            logger.info("Scheduler already running")
            return

        logger.info("Starting workflow scheduler")
        self._running = True

        await self.reconcile()

        self._reconcile_timer = self._interval_timer_factory(self.reconcile_interval, self._on_reconcile_tick)
        self._reconcile_timer.start()

    async def stop(self) -> None:
        """Halt every armed timer. Fires already running are left to finish."""
        logger.info("Stopping workflow scheduler")
        self._running = False

        timer, self._reconcile_timer = self._reconcile_timer, None
        if timer is not None:
            await timer.stop()

        for schedule_id in list(self._armed):
            await self._disarm(schedule_id)

    async def wait_for_inflight(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_reconcile_tick(self) -> None:
        if self._reconciling:
            logger.warning("Previous reconciliation still running, skipping tick")
            return
        self._spawn(self.reconcile())

    async def reconcile(self) -> bool:
        """Align armed timers with the enabled schedules. Returns False if skipped."""
        if self._reconciling:
            logger.warning("Reconciliation already in progress, skipping")
            return False
        if not self._running:
            return False

        self._reconciling = True
        try:
            schedules = await self.storage.list_enabled_schedules()
            enabled = {s.id: s for s in schedules if s.enabled}

            # Remove tasks that no longer exist, are disabled, or were edited
            for schedule_id, armed in list(self._armed.items()):
                current = enabled.get(schedule_id)
                if current is None:
                    logger.info("Removing schedule", extra=log_fields(schedule_id=schedule_id))
                    await self._disarm(schedule_id)
                elif (
                    current.cron_expression != armed.cron_expression
                    or (current.timezone or "UTC") != armed.timezone
                    or current.workflow_id != armed.workflow_id
                ):
                    logger.info(
                        "Schedule changed, re-arming",
                        extra=log_fields(
                            schedule_id=schedule_id,
                            old_expression=armed.cron_expression,
                            new_expression=current.cron_expression,
                            timezone=current.timezone,
                        ),
                    )
                    await self._disarm(schedule_id)

            for schedule in enabled.values():
                if schedule.id not in self._armed:
                    self.arm(schedule)
            return True
        except Exception:
            logger.exception("Error loading schedules")
            return False
        finally:
            self._reconciling = False

    def arm(self, schedule) -> bool:
        if not self._running:
            return False

        if not validate(schedule.cron_expression):
            logger.error(
                "Invalid cron expression for schedule",
                extra=log_fields(schedule_id=schedule.id, cron_expression=schedule.cron_expression),
            )
            return False

        tz = schedule.timezone or "UTC"
        try:
            timer = self._timer_factory(schedule, lambda: self._handle_fire(schedule))
        except InvalidInputError as e:
            logger.error(
                f"Cannot arm schedule {schedule.id}: {e.reason}",
                extra=log_fields(schedule_id=schedule.id, timezone=tz),
            )
            return False

        logger.info(
            "Scheduling workflow",
            extra=log_fields(
                schedule_id=schedule.id,
                workflow_id=schedule.workflow_id,
                cron_expression=schedule.cron_expression,
                timezone=tz,
            ),
        )
        self._armed[schedule.id] = ArmedSchedule(
            schedule_id=schedule.id,
            workflow_id=schedule.workflow_id,
            cron_expression=schedule.cron_expression,
            timezone=tz,
            timer=timer,
        )
        timer.start()
        return True

    async def _disarm(self, schedule_id: str) -> None:
        armed = self._armed.pop(schedule_id, None)
        if armed is not None:
            await armed.timer.stop()

    def _handle_fire(self, schedule) -> None:
        if not self._running or schedule.id not in self._armed:
            return
        self._spawn(self.on_fire(schedule))

    async def on_fire(self, schedule) -> bool:
        """Run one scheduled execution. Never raises; returns True on a successful dispatch."""
        workflow_id = schedule.workflow_id
        if workflow_id in self._in_flight:
            logger.warning(
                "Scheduled execution already running, skipping fire",
                extra=log_fields(schedule_id=schedule.id, workflow_id=workflow_id),
            )
            return False

        self._in_flight.add(workflow_id)
        try:
            # Dispatchers return once the run is queued, the execution row tracks it until it finishes
            since = self.clock.now() - self.execution_timeout
            if await self.storage.has_active_execution(workflow_id, "schedule", since):
                logger.warning(
                    "Scheduled execution already running, skipping fire",
                    extra=log_fields(schedule_id=schedule.id, workflow_id=workflow_id),
                )
                return False

            logger.info("Executing scheduled workflow", extra=log_fields(workflow_id=workflow_id, schedule_id=schedule.id))

            workflow = await self.storage.get_workflow(workflow_id)
            if not workflow:
                logger.error("Workflow not found", extra=log_fields(workflow_id=workflow_id, schedule_id=schedule.id))
                return False

            success = False
            try:
                execution_id = await self.dispatcher.execute_workflow(workflow_id, {}, trigger="schedule")
                success = True
                logger.info(
                    "Successfully executed scheduled workflow",
                    extra=log_fields(workflow_id=workflow_id, execution_id=execution_id),
                )
                self.broadcaster.emit(execution_id, "execution_started", {"workflowName": workflow.name, "status": "pending"})
            except Exception as e:
                logger.exception(
                    f"Error executing scheduled workflow {workflow_id}: {e}",
                    extra=log_fields(workflow_id=workflow_id, schedule_id=schedule.id),
                )

            # Recorded whether or not the dispatch succeeded
            await self.storage.update_schedule(schedule.id, {"last_run": self.clock.now()})
            return success
        except Exception:
            logger.exception("Scheduled fire failed", extra=log_fields(workflow_id=workflow_id, schedule_id=schedule.id))
            return False
        finally:
            self._in_flight.discard(workflow_id)

    async def execute_schedule_now(self, schedule_id: str) -> bool:
        schedule = await self.storage.get_schedule_by_id(schedule_id)
        if not schedule:
            raise NotFoundError("Schedule not found")
        return await self.on_fire(schedule)
