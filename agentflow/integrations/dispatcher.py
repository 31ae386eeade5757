from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import asyncio

import httpx

from agentflow.config import settings
from agentflow.core.errors import DownstreamFailureError
from agentflow.core.logging import get_logger, log_fields
from agentflow.integrations.http_client import HttpClient, post_json

logger = get_logger("dispatcher")


class BaseExecutionDispatcher(ABC):
    """Hands a workflow run to the multi-agent executor and returns the execution id."""

    @abstractmethod
    async def execute_workflow(self, workflow_id: str, inputs: Dict[str, Any], trigger: str = "manual") -> str:
        pass


class CeleryExecutionDispatcher(BaseExecutionDispatcher):
    """Records a pending execution row and enqueues the executor's Celery task."""

    TASK_NAME = "execute_workflow_task"

    def __init__(self, storage, app=None):
        if app is None:
            from celery_app.celery import celery_app as app
        self.storage = storage
        self.celery_app = app

    async def execute_workflow(self, workflow_id: str, inputs: Dict[str, Any], trigger: str = "manual") -> str:
        execution = await self.storage.create_execution(workflow_id, inputs, trigger=trigger)
        try:
            # send_task talks to the broker synchronously
            await asyncio.to_thread(
                self.celery_app.send_task,
                self.TASK_NAME,
                args=[execution.id, workflow_id, inputs],
            )
        except Exception as e:
            logger.error(
                f"Failed to enqueue execution {execution.id}: {e}",
                extra=log_fields(workflow_id=workflow_id, execution_id=execution.id),
            )
            await self.storage.update_execution(execution.id, {"status": "failed", "error": f"Enqueue failed: {e}"})
            raise DownstreamFailureError(f"Execution dispatch failed: {e}") from e
        logger.info("Execution enqueued", extra=log_fields(workflow_id=workflow_id, execution_id=execution.id, trigger=trigger))
        return execution.id


class HttpExecutionDispatcher(BaseExecutionDispatcher):
    """Posts the run to an external executor service.

    With a storage handle, the accepted run is also recorded locally under the
    executor's execution id so it can be tracked until it finishes.
    """

    def __init__(
        self,
        base_url: str = settings.EXECUTOR_URL,
        api_key: Optional[str] = settings.EXECUTOR_API_KEY,
        client: Optional[httpx.AsyncClient] = None,
        storage=None,
    ):
        self.storage = storage
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_key}"
        } if api_key else {}
        self._client = client

    async def execute_workflow(self, workflow_id: str, inputs: Dict[str, Any], trigger: str = "manual") -> str:
        client = self._client or await HttpClient.get_client()
        body = await post_json(
            client,
            f"{self.base_url}/api/workflows/{workflow_id}/execute",
            {"inputs": inputs, "trigger": trigger},
            headers=self.headers,
        )
        execution_id = (body.get("id") or body.get("execution_id")) if isinstance(body, dict) else None
        if not execution_id:
            raise DownstreamFailureError("Executor returned no execution id")
        if self.storage is not None:
            await self.storage.create_execution(workflow_id, inputs, trigger=trigger, execution_id=str(execution_id))
        logger.info("Execution posted to executor", extra=log_fields(workflow_id=workflow_id, execution_id=execution_id, trigger=trigger))
        return str(execution_id)


def build_dispatcher(storage, backend: str = settings.EXECUTION_BACKEND) -> BaseExecutionDispatcher:
    if backend == "http":
        return HttpExecutionDispatcher(storage=storage)
    if backend == "celery":
        return CeleryExecutionDispatcher(storage)
    raise ValueError(f"Unknown execution backend: {backend}")
