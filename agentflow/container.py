from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentflow.core.clock import Clock
from agentflow.engine.scheduler import WorkflowScheduler
from agentflow.integrations.broadcast import Broadcaster, LoggingBroadcaster
from agentflow.integrations.dispatcher import BaseExecutionDispatcher, build_dispatcher
from agentflow.services.schedule_service import ScheduleService
from agentflow.services.storage import Storage
from agentflow.services.version_service import VersionService
from agentflow.services.webhook_service import WebhookService


@dataclass
class ServiceContainer:
    """Services built once at process start and shared by reference."""
    storage: Storage
    dispatcher: BaseExecutionDispatcher
    scheduler: WorkflowScheduler
    webhooks: WebhookService
    versions: VersionService
    schedules: ScheduleService


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: Optional[BaseExecutionDispatcher] = None,
    clock: Optional[Clock] = None,
    broadcaster: Optional[Broadcaster] = None,
) -> ServiceContainer:
    clock = clock or Clock()
    broadcaster = broadcaster or LoggingBroadcaster()
    storage = Storage(session_factory)
    dispatcher = dispatcher or build_dispatcher(storage)
    scheduler = WorkflowScheduler(storage, dispatcher, clock=clock, broadcaster=broadcaster)
    return ServiceContainer(
        storage=storage,
        dispatcher=dispatcher,
        scheduler=scheduler,
        webhooks=WebhookService(storage, dispatcher, clock=clock, broadcaster=broadcaster),
        versions=VersionService(storage),
        schedules=ScheduleService(storage, scheduler=scheduler, clock=clock),
    )
