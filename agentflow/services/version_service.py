from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
import asyncio
import copy
import math

from agentflow.core.errors import InvalidInputError, NotFoundError
from agentflow.core.logging import get_logger, log_fields
from agentflow.models import WorkflowVersion

logger = get_logger("versions")

SNAPSHOT_KEYS = ("nodes", "edges", "agents", "name", "description")


@dataclass
class VersionDiff:
    nodes_added: int = 0
    nodes_removed: int = 0
    nodes_modified: int = 0
    edges_added: int = 0
    edges_removed: int = 0
    agents_added: int = 0
    agents_removed: int = 0
    agents_modified: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class VersionComparison:
    version1: WorkflowVersion
    version2: WorkflowVersion
    diff: VersionDiff


def _by_id(items: Optional[List[Dict[str, Any]]]) -> Dict[Any, Dict[str, Any]]:
    return {item["id"]: item for item in items or [] if isinstance(item, dict) and "id" in item}


def _count_changes(before: Optional[list], after: Optional[list]):
    a, b = _by_id(before), _by_id(after)
    added = len(b.keys() - a.keys())
    removed = len(a.keys() - b.keys())
    modified = sum(1 for key in a.keys() & b.keys() if a[key] != b[key])
    return added, removed, modified


def diff_workflow_data(data_a: Dict[str, Any], data_b: Dict[str, Any]) -> VersionDiff:
    """Structural delta from snapshot A to snapshot B, matched by element id."""
    nodes_added, nodes_removed, nodes_modified = _count_changes(data_a.get("nodes"), data_b.get("nodes"))
    # Edges are compared by identity only
    edges_added, edges_removed, _ = _count_changes(data_a.get("edges"), data_b.get("edges"))
    agents_added, agents_removed, agents_modified = _count_changes(data_a.get("agents"), data_b.get("agents"))
    return VersionDiff(
        nodes_added=nodes_added,
        nodes_removed=nodes_removed,
        nodes_modified=nodes_modified,
        edges_added=edges_added,
        edges_removed=edges_removed,
        agents_added=agents_added,
        agents_removed=agents_removed,
        agents_modified=agents_modified,
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def rolling_stats(
    execution_count: Optional[int],
    success_rate: Optional[int],
    avg_duration: Optional[int],
    success: bool,
    duration_ms: float,
) -> Dict[str, int]:
    """Fold one execution into the running count, success rate (0-100) and mean duration."""
    old_count = execution_count or 0
    old_rate = success_rate or 0
    old_avg = avg_duration or 0

    new_count = old_count + 1
    successes = (old_rate / 100) * old_count + (1 if success else 0)
    return {
        "execution_count": new_count,
        "success_rate": _round_half_up(successes / new_count * 100),
        "avg_duration": _round_half_up((old_avg * old_count + duration_ms) / new_count),
    }


class VersionService:
    def __init__(self, storage):
        self.storage = storage
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = self._locks[workflow_id] = asyncio.Lock()
        return lock

    async def create_version(self, workflow_id: str, user_id: Optional[str], message: Optional[str] = None) -> WorkflowVersion:
        async with self._lock_for(workflow_id):
            return await self._create_version_locked(workflow_id, user_id, message)

    async def _create_version_locked(self, workflow_id: str, user_id: Optional[str], message: Optional[str]) -> WorkflowVersion:
        workflow = await self.storage.get_workflow(workflow_id)
        if not workflow:
            raise NotFoundError("Workflow not found")

        agents = await self.storage.list_agents(workflow_id)
        existing = await self.storage.find_versions(workflow_id)
        latest = max(existing, key=lambda v: v.version) if existing else None
        number = (latest.version if latest else 0) + 1

        # Deep copy so later edits to the live workflow never reach the snapshot
        workflow_data = copy.deepcopy({
            "nodes": workflow.nodes,
            "edges": workflow.edges,
            "agents": [agent.to_snapshot() for agent in agents],
            "name": workflow.name,
            "description": workflow.description,
        })

        version = await self.storage.insert_version({
            "workflow_id": workflow_id,
            "version": number,
            "commit_message": message or f"Version {number}",
            "created_by": user_id,
            "workflow_data": workflow_data,
            "parent_version_id": latest.id if latest else None,
            "tag": None,
            "execution_count": 0,
            "success_rate": 0,
            "avg_duration": 0,
        })
        logger.info(
            "Workflow version created",
            extra=log_fields(workflow_id=workflow_id, version_id=version.id, version=number, created_by=user_id),
        )
        return version

    async def get_versions(self, workflow_id: str) -> List[WorkflowVersion]:
        versions = await self.storage.find_versions(workflow_id)
        return sorted(versions, key=lambda v: v.version, reverse=True)

    async def get_version(self, version_id: str) -> Optional[WorkflowVersion]:
        return await self.storage.find_version(version_id)

    async def restore_version(self, workflow_id: str, version_id: str, user_id: Optional[str]) -> WorkflowVersion:
        """Overwrite the live workflow from a snapshot and record that as a new version."""
        version = await self.storage.find_version(version_id)
        if not version:
            raise NotFoundError("Version not found")
        if version.workflow_id != workflow_id:
            raise InvalidInputError("Version does not belong to this workflow")

        data = copy.deepcopy(version.workflow_data or {})
        async with self._lock_for(workflow_id):
            await self.storage.update_workflow(workflow_id, {
                "name": data.get("name"),
                "description": data.get("description"),
                "nodes": data.get("nodes", []),
                "edges": data.get("edges", []),
            })
            await self.storage.delete_agents(workflow_id)
            await self.storage.insert_agents(workflow_id, data.get("agents") or [])
            logger.info(
                "Workflow restored from version",
                extra=log_fields(workflow_id=workflow_id, version_id=version_id, version=version.version),
            )
            return await self._create_version_locked(workflow_id, user_id, f"Restored from version {version.version}")

    async def compare_versions(self, version_id_a: str, version_id_b: str) -> VersionComparison:
        version_a = await self.storage.find_version(version_id_a)
        version_b = await self.storage.find_version(version_id_b)
        if not version_a or not version_b:
            raise NotFoundError("One or both versions not found")
        return VersionComparison(
            version1=version_a,
            version2=version_b,
            diff=diff_workflow_data(version_a.workflow_data or {}, version_b.workflow_data or {}),
        )

    async def tag_version(self, version_id: str, tag: Optional[str]) -> WorkflowVersion:
        await self.storage.update_version(version_id, {"tag": tag})
        version = await self.storage.find_version(version_id)
        if not version:
            raise NotFoundError("Version not found")
        return version

    async def update_version_stats(self, workflow_id: str, success: bool, duration_ms: float) -> Optional[Dict[str, int]]:
        async with self._lock_for(workflow_id):
            latest = await self.storage.find_latest_version(workflow_id)
            if not latest:
                return None
            stats = rolling_stats(latest.execution_count, latest.success_rate, latest.avg_duration, success, duration_ms)
            await self.storage.update_version(latest.id, stats)
            logger.info(
                "Version stats updated",
                extra=log_fields(workflow_id=workflow_id, version_id=latest.id, **stats),
            )
            return stats

    async def export_version(self, version_id: str) -> Dict[str, Any]:
        version = await self.storage.find_version(version_id)
        if not version:
            raise NotFoundError("Version not found")
        data = copy.deepcopy(version.workflow_data or {})
        return {
            "nodes": data.get("nodes", []),
            "edges": data.get("edges", []),
            "agents": data.get("agents", []),
            "name": data.get("name"),
            "description": data.get("description"),
        }
