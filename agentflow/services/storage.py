from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, update, delete, desc
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from agentflow.models import (
    Workflow,
    Agent,
    WorkflowExecution,
    WorkflowSchedule,
    WorkflowWebhook,
    WorkflowVersion,
)

ACTIVE_EXECUTION_STATUSES = ("pending", "running")

class Storage:
    """Persistence collaborator used by the scheduler, webhook gate and version engine.

    Every call runs in its own short session and commits before returning, so
    callers never hold a transaction across a dispatch or a sleep.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Workflows / agents

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        async with self._session_factory() as db:
            result = await db.execute(select(Workflow).where(Workflow.id == workflow_id))
            return result.scalar_one_or_none()

    async def create_workflow(
        self,
        name: str,
        nodes: List[Dict[str, Any]],
        edges: List[Dict[str, Any]],
        description: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Workflow:
        async with self._session_factory() as db:
            workflow = Workflow(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name,
                description=description,
                definition={"nodes": nodes, "edges": edges},
            )
            db.add(workflow)
            await db.commit()
            await db.refresh(workflow)
            return workflow

    async def update_workflow(self, workflow_id: str, fields: Dict[str, Any]) -> None:
        values = dict(fields)
        if "nodes" in values or "edges" in values:
            values["definition"] = {
                "nodes": values.pop("nodes", []),
                "edges": values.pop("edges", []),
            }
        async with self._session_factory() as db:
            await db.execute(update(Workflow).where(Workflow.id == workflow_id).values(**values))
            await db.commit()

    async def list_agents(self, workflow_id: str) -> List[Agent]:
        async with self._session_factory() as db:
            result = await db.execute(select(Agent).where(Agent.workflow_id == workflow_id))
            return list(result.scalars().all())

    async def insert_agents(self, workflow_id: str, agents: List[Dict[str, Any]]) -> None:
        if not agents:
            return
        async with self._session_factory() as db:
            for data in agents:
                fields = {k: v for k, v in data.items() if k in Agent.SNAPSHOT_FIELDS}
                fields.setdefault("id", str(uuid.uuid4()))
                db.add(Agent(workflow_id=workflow_id, **fields))
            await db.commit()

    async def delete_agents(self, workflow_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(delete(Agent).where(Agent.workflow_id == workflow_id))
            await db.commit()
            return result.rowcount

    # Executions

    async def create_execution(
        self,
        workflow_id: str,
        inputs: Dict[str, Any],
        trigger: str = "manual",
        execution_id: Optional[str] = None,
    ) -> WorkflowExecution:
        async with self._session_factory() as db:
            execution = WorkflowExecution(
                id=execution_id or str(uuid.uuid4()),
                workflow_id=workflow_id,
                status="pending",
                trigger=trigger,
                input=inputs,
            )
            db.add(execution)
            await db.commit()
            await db.refresh(execution)
            return execution

    async def update_execution(self, execution_id: str, fields: Dict[str, Any]) -> None:
        async with self._session_factory() as db:
            await db.execute(update(WorkflowExecution).where(WorkflowExecution.id == execution_id).values(**fields))
            await db.commit()

    async def has_active_execution(self, workflow_id: str, trigger: str, since: datetime) -> bool:
        """True if a ``trigger`` execution of the workflow started after ``since`` has not finished."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution.id)
                .where(
                    WorkflowExecution.workflow_id == workflow_id,
                    WorkflowExecution.trigger == trigger,
                    WorkflowExecution.status.in_(ACTIVE_EXECUTION_STATUSES),
                    WorkflowExecution.started_at >= since,
                )
                .limit(1)
            )
            return result.first() is not None

    # Schedules

    async def list_enabled_schedules(self) -> List[WorkflowSchedule]:
        async with self._session_factory() as db:
            result = await db.execute(select(WorkflowSchedule).where(WorkflowSchedule.enabled.is_(True)))
            return list(result.scalars().all())

    async def get_schedule_by_id(self, schedule_id: str) -> Optional[WorkflowSchedule]:
        async with self._session_factory() as db:
            result = await db.execute(select(WorkflowSchedule).where(WorkflowSchedule.id == schedule_id))
            return result.scalar_one_or_none()

    async def create_schedule(
        self,
        workflow_id: str,
        cron_expression: str,
        timezone: str = "UTC",
        enabled: bool = True,
    ) -> WorkflowSchedule:
        async with self._session_factory() as db:
            schedule = WorkflowSchedule(
                id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                cron_expression=cron_expression,
                timezone=timezone,
                enabled=enabled,
            )
            db.add(schedule)
            await db.commit()
            await db.refresh(schedule)
            return schedule

    async def update_schedule(self, schedule_id: str, fields: Dict[str, Any]) -> None:
        async with self._session_factory() as db:
            await db.execute(update(WorkflowSchedule).where(WorkflowSchedule.id == schedule_id).values(**fields))
            await db.commit()

    async def delete_schedule(self, schedule_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(delete(WorkflowSchedule).where(WorkflowSchedule.id == schedule_id))
            await db.commit()
            return result.rowcount > 0

    # Webhooks

    async def get_webhook(self, webhook_id: str) -> Optional[WorkflowWebhook]:
        async with self._session_factory() as db:
            result = await db.execute(select(WorkflowWebhook).where(WorkflowWebhook.id == webhook_id))
            return result.scalar_one_or_none()

    async def get_webhook_by_workflow(self, workflow_id: str) -> Optional[WorkflowWebhook]:
        async with self._session_factory() as db:
            result = await db.execute(select(WorkflowWebhook).where(WorkflowWebhook.workflow_id == workflow_id))
            return result.scalar_one_or_none()

    async def create_webhook(self, workflow_id: str, fields: Dict[str, Any]) -> WorkflowWebhook:
        fields = dict(fields)
        async with self._session_factory() as db:
            webhook = WorkflowWebhook(id=fields.pop("id", str(uuid.uuid4())), workflow_id=workflow_id, **fields)
            db.add(webhook)
            await db.commit()
            await db.refresh(webhook)
            return webhook

    async def update_webhook(self, webhook_id: str, fields: Dict[str, Any]) -> None:
        async with self._session_factory() as db:
            await db.execute(update(WorkflowWebhook).where(WorkflowWebhook.id == webhook_id).values(**fields))
            await db.commit()

    async def increment_webhook_trigger(
        self,
        webhook_id: str,
        last_triggered_at: datetime,
        call_logs: List[Dict[str, Any]],
    ) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(WorkflowWebhook)
                .where(WorkflowWebhook.id == webhook_id)
                .values(
                    trigger_count=WorkflowWebhook.trigger_count + 1,
                    last_triggered_at=last_triggered_at,
                    call_logs=call_logs,
                )
            )
            await db.commit()

    # Versions

    async def insert_version(self, values: Dict[str, Any]) -> WorkflowVersion:
        values = dict(values)
        async with self._session_factory() as db:
            version = WorkflowVersion(id=values.pop("id", str(uuid.uuid4())), **values)
            db.add(version)
            await db.commit()
            await db.refresh(version)
            return version

    async def find_versions(self, workflow_id: str) -> List[WorkflowVersion]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowVersion)
                .where(WorkflowVersion.workflow_id == workflow_id)
                .order_by(desc(WorkflowVersion.version))
            )
            return list(result.scalars().all())

    async def find_version(self, version_id: str) -> Optional[WorkflowVersion]:
        async with self._session_factory() as db:
            result = await db.execute(select(WorkflowVersion).where(WorkflowVersion.id == version_id))
            return result.scalar_one_or_none()

    async def find_latest_version(self, workflow_id: str) -> Optional[WorkflowVersion]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowVersion)
                .where(WorkflowVersion.workflow_id == workflow_id)
                .order_by(desc(WorkflowVersion.version))
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def update_version(self, version_id: str, fields: Dict[str, Any]) -> None:
        async with self._session_factory() as db:
            await db.execute(update(WorkflowVersion).where(WorkflowVersion.id == version_id).values(**fields))
            await db.commit()
