from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional

from agentflow.config import settings


class CallLog:
    """Fixed-capacity, newest-first ring of webhook call entries."""

    def __init__(self, entries: Optional[Iterable[Dict[str, Any]]] = None, capacity: int = settings.WEBHOOK_CALL_LOG_SIZE):
        self.capacity = capacity
        # Entries arrive newest-first; appending keeps that order and the cap drops the oldest
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=capacity)
        for entry in entries or []:
            if len(self._entries) == capacity:
                break
            self._entries.append(entry)

    def record(self, entry: Dict[str, Any]) -> None:
        self._entries.appendleft(entry)

    def to_list(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
