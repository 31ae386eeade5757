from celery import Celery
from agentflow.config import settings

celery_app = Celery(
    "agentflow_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["celery_app.tasks"]
)

# Runs are executed by the executor's workers; this app only enqueues them
# and consumes completion callbacks.
EXECUTION_QUEUE = "workflow_executions"
STATS_QUEUE = "version_stats"

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "execute_workflow_task": {"queue": EXECUTION_QUEUE},
        "record_execution_result": {"queue": STATS_QUEUE},
    },
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=30,
    task_time_limit=60,
)
