from .workflow import Workflow, Agent
from .execution import WorkflowExecution
from .schedule import WorkflowSchedule
from .webhook import WorkflowWebhook
from .version import WorkflowVersion

__all__ = [
    "Workflow",
    "Agent",
    "WorkflowExecution",
    "WorkflowSchedule",
    "WorkflowWebhook",
    "WorkflowVersion",
]
