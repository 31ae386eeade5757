import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from agentflow.core.clock import FrozenClock
from agentflow.database import build_engine, build_session_factory, create_all
from agentflow.engine.timers import Timer
from agentflow.integrations.dispatcher import BaseExecutionDispatcher
from agentflow.services.storage import Storage


class FakeDispatcher(BaseExecutionDispatcher):
    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None):
        self.calls: List[Tuple[str, Dict[str, Any], str]] = []
        self.fail = fail
        self.gate = gate
        self.started = asyncio.Event()

    async def execute_workflow(self, workflow_id: str, inputs: Dict[str, Any], trigger: str = "manual") -> str:
        self.calls.append((workflow_id, inputs, trigger))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("executor unavailable")
        return f"exec_{len(self.calls)}"


class FakeTimer(Timer):
    def __init__(self, schedule, callback):
        super().__init__(callback)
        self.schedule = schedule
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def fire(self) -> None:
        self._callback()

    async def _run(self) -> None:
        pass


class FakeCeleryApp:
    """Stands in for the Celery app: records send_task calls instead of talking to a broker."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, list]] = []

    def send_task(self, name, args=None):
        if self.fail:
            raise ConnectionError("broker down")
        self.sent.append((name, args))


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def fake_celery():
    return FakeCeleryApp()


@pytest.fixture
def fake_timers():
    """Timer factory recording every timer the scheduler creates."""
    created: List[FakeTimer] = []

    def factory(schedule, callback):
        timer = FakeTimer(schedule, callback)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    await create_all(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def storage(session_factory):
    return Storage(session_factory)


@pytest.fixture
def workflow_nodes():
    return [
        {"id": "node_1", "type": "start", "data": {}},
        {"id": "node_2", "type": "agent", "data": {"agentId": "agent_1"}},
    ]


@pytest.fixture
def workflow_edges():
    return [{"id": "edge_1", "source": "node_1", "target": "node_2"}]


@pytest.fixture
def agent_data():
    return [
        {
            "id": "agent_1",
            "name": "Test Agent",
            "role": "assistant",
            "description": "A test agent",
            "provider": "openai",
            "model": "gpt-4",
            "system_prompt": "You are a helpful assistant",
            "temperature": 0.7,
            "max_tokens": 1000,
            "capabilities": ["chat"],
            "node_id": "node_2",
            "position": {"x": 100, "y": 100},
        }
    ]


@pytest_asyncio.fixture
async def workflow(storage, workflow_nodes, workflow_edges, agent_data):
    wf = await storage.create_workflow(
        name="Test Workflow",
        nodes=workflow_nodes,
        edges=workflow_edges,
        description="A test workflow",
        user_id="user_456",
    )
    await storage.insert_agents(wf.id, agent_data)
    return wf
