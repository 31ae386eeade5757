from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from agentflow.core.logging import get_logger, log_fields

logger = get_logger("broadcast")


class Broadcaster(ABC):
    """Fire-and-forget execution event sink keyed by execution id."""

    @abstractmethod
    def emit(self, execution_id: Optional[str], event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        pass


class LoggingBroadcaster(Broadcaster):
    def emit(self, execution_id: Optional[str], event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not execution_id:
            return
        logger.info(
            f"Execution event: {event_type}",
            extra=log_fields(
                type=event_type,
                execution_id=execution_id,
                data=data or {},
                event_timestamp=datetime.now(timezone.utc).isoformat(),
            ),
        )
