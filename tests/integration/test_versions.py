import pytest

from agentflow.core.errors import InvalidInputError, NotFoundError
from agentflow.services.version_service import VersionService


@pytest.fixture
def versions(storage):
    return VersionService(storage)


@pytest.mark.asyncio
async def test_create_first_version(versions, workflow, workflow_nodes, workflow_edges):
    version = await versions.create_version(workflow.id, "user_456", "Initial")

    assert version.version == 1
    assert version.commit_message == "Initial"
    assert version.created_by == "user_456"
    assert version.parent_version_id is None
    assert version.execution_count == 0
    assert version.workflow_data["nodes"] == workflow_nodes
    assert version.workflow_data["edges"] == workflow_edges
    assert version.workflow_data["name"] == "Test Workflow"
    assert version.workflow_data["agents"][0]["id"] == "agent_1"
    assert version.workflow_data["agents"][0]["system_prompt"] == "You are a helpful assistant"


@pytest.mark.asyncio
async def test_versions_increment_and_link_parent(versions, workflow):
    v1 = await versions.create_version(workflow.id, "u1")
    v2 = await versions.create_version(workflow.id, "u1")
    v3 = await versions.create_version(workflow.id, "u1")

    assert [v1.version, v2.version, v3.version] == [1, 2, 3]
    assert v2.commit_message == "Version 2"
    assert v2.parent_version_id == v1.id
    assert v3.parent_version_id == v2.id

    listed = await versions.get_versions(workflow.id)
    assert [v.version for v in listed] == [3, 2, 1]


@pytest.mark.asyncio
async def test_create_version_missing_workflow(versions):
    with pytest.raises(NotFoundError) as exc:
        await versions.create_version("missing", "u1")
    assert exc.value.reason == "Workflow not found"


@pytest.mark.asyncio
async def test_snapshot_is_frozen(versions, storage, workflow):
    v1 = await versions.create_version(workflow.id, "u1")
    await storage.update_workflow(workflow.id, {"name": "Renamed", "nodes": [], "edges": []})

    stored = await versions.get_version(v1.id)
    assert stored.workflow_data["name"] == "Test Workflow"
    assert len(stored.workflow_data["nodes"]) == 2


@pytest.mark.asyncio
async def test_get_version_missing(versions):
    assert await versions.get_version("missing") is None


@pytest.mark.asyncio
async def test_restore_version(versions, storage, workflow, workflow_nodes):
    v1 = await versions.create_version(workflow.id, "u1")

    await storage.update_workflow(workflow.id, {"name": "Changed", "nodes": [{"id": "node_9"}], "edges": []})
    await storage.delete_agents(workflow.id)
    await storage.insert_agents(workflow.id, [{"id": "agent_9", "name": "Other", "provider": "openai", "model": "gpt-4"}])
    await versions.create_version(workflow.id, "u1")

    restored = await versions.restore_version(workflow.id, v1.id, "u2")

    assert restored.version == 3
    assert restored.commit_message == "Restored from version 1"
    assert restored.created_by == "u2"

    live = await storage.get_workflow(workflow.id)
    assert live.name == "Test Workflow"
    assert live.nodes == workflow_nodes
    agents = await storage.list_agents(workflow.id)
    assert [a.id for a in agents] == ["agent_1"]


@pytest.mark.asyncio
async def test_restore_version_errors(versions, storage, workflow):
    other = await storage.create_workflow(name="Other", nodes=[], edges=[])
    foreign = await versions.create_version(other.id, "u1")

    with pytest.raises(NotFoundError) as exc:
        await versions.restore_version(workflow.id, "missing", "u1")
    assert exc.value.reason == "Version not found"

    with pytest.raises(InvalidInputError) as exc:
        await versions.restore_version(workflow.id, foreign.id, "u1")
    assert exc.value.reason == "Version does not belong to this workflow"


@pytest.mark.asyncio
async def test_compare_versions(versions, storage, workflow, workflow_nodes):
    v1 = await versions.create_version(workflow.id, "u1")
    nodes = workflow_nodes + [{"id": "node_3", "type": "end", "data": {}}]
    await storage.update_workflow(workflow.id, {"nodes": nodes, "edges": []})
    v2 = await versions.create_version(workflow.id, "u1")

    comparison = await versions.compare_versions(v1.id, v2.id)
    assert comparison.version1.id == v1.id
    assert comparison.version2.id == v2.id
    assert comparison.diff.nodes_added == 1
    assert comparison.diff.edges_removed == 1
    assert comparison.diff.agents_modified == 0

    with pytest.raises(NotFoundError) as exc:
        await versions.compare_versions(v1.id, "missing")
    assert exc.value.reason == "One or both versions not found"


@pytest.mark.asyncio
async def test_tag_version(versions, workflow):
    v1 = await versions.create_version(workflow.id, "u1")
    tagged = await versions.tag_version(v1.id, "production")
    assert tagged.tag == "production"

    cleared = await versions.tag_version(v1.id, None)
    assert cleared.tag is None

    with pytest.raises(NotFoundError):
        await versions.tag_version("missing", "v1.0.0")


@pytest.mark.asyncio
async def test_update_version_stats(versions, workflow):
    assert await versions.update_version_stats(workflow.id, True, 5000) is None

    await versions.create_version(workflow.id, "u1")
    v2 = await versions.create_version(workflow.id, "u1")

    stats = await versions.update_version_stats(workflow.id, True, 5000)
    assert stats == {"execution_count": 1, "success_rate": 100, "avg_duration": 5000}

    stats = await versions.update_version_stats(workflow.id, False, 3000)
    assert stats == {"execution_count": 2, "success_rate": 50, "avg_duration": 4000}

    stored = await versions.get_version(v2.id)
    assert stored.execution_count == 2
    assert stored.success_rate == 50
    assert stored.avg_duration == 4000


@pytest.mark.asyncio
async def test_export_version(versions, workflow, workflow_nodes, workflow_edges):
    v1 = await versions.create_version(workflow.id, "u1")
    exported = await versions.export_version(v1.id)

    assert exported["name"] == "Test Workflow"
    assert exported["description"] == "A test workflow"
    assert exported["nodes"] == workflow_nodes
    assert exported["edges"] == workflow_edges
    assert exported["agents"][0]["name"] == "Test Agent"

    with pytest.raises(NotFoundError):
        await versions.export_version("missing")
