import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional
from celery_app.celery import celery_app
from agentflow.database import build_engine, build_session_factory
from agentflow.services.storage import Storage
from agentflow.services.version_service import VersionService
from agentflow.core.logging import logger

@celery_app.task(
    name="record_execution_result",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True
)
def record_execution_result(
    self,
    workflow_id: str,
    success: bool,
    duration_ms: int,
    execution_id: Optional[str] = None,
    error: Optional[str] = None,
):
    """Called by the executor when a run finishes.

    Closes the execution row, which releases the schedule guard for the
    workflow, and folds the run into the latest version's stats.
    """
    try:
        return asyncio.run(async_record_execution_result(workflow_id, success, duration_ms, execution_id, error))
    except Exception as exc:
        logger.error(f"Task failed, retrying: {exc}")
        raise self.retry(exc=exc)

async def async_record_execution_result(
    workflow_id: str,
    success: bool,
    duration_ms: int,
    execution_id: Optional[str] = None,
    error: Optional[str] = None,
    session_factory=None,
) -> Optional[Dict[str, int]]:
    # A fresh engine per run; asyncio.run gives every task its own event loop
    engine = None
    if session_factory is None:
        engine = build_engine()
        session_factory = build_session_factory(engine)
    try:
        storage = Storage(session_factory)
        if execution_id:
            await storage.update_execution(execution_id, {
                "status": "completed" if success else "failed",
                "completed_at": datetime.now(timezone.utc),
                "duration": int(duration_ms),
                "error": None if success else error,
            })
        stats = await VersionService(storage).update_version_stats(workflow_id, success, duration_ms)
        if stats is None:
            logger.info(f"No version to update for workflow {workflow_id}")
        return stats
    finally:
        if engine is not None:
            await engine.dispose()
