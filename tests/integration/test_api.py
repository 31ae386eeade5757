import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentflow.container import build_container
from agentflow.main import app


@pytest_asyncio.fixture
async def services(session_factory, dispatcher, clock):
    app.state.services = build_container(session_factory, dispatcher=dispatcher, clock=clock)
    yield app.state.services
    del app.state.services


@pytest_asyncio.fixture
async def client(services):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def api_workflow(services, workflow_nodes, workflow_edges, agent_data):
    wf = await services.storage.create_workflow(name="API Workflow", nodes=workflow_nodes, edges=workflow_edges)
    await services.storage.insert_agents(wf.id, agent_data)
    return wf


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert "AgentFlow Automation API" in response.json()["message"]


@pytest.mark.asyncio
async def test_webhook_lifecycle(client, dispatcher, api_workflow):
    response = await client.post(f"/api/v1/webhooks/workflows/{api_workflow.id}", json={"payload_transformer": {"email": "user.email"}})
    assert response.status_code == 201
    webhook = response.json()
    secret = webhook["secret_key"]

    response = await client.post(
        f"/api/v1/webhooks/trigger/{api_workflow.id}/{secret}",
        json={"user": {"email": "a@b.com"}},
    )
    assert response.status_code == 202
    assert response.json()["execution_id"] == "exec_1"
    assert dispatcher.calls[0][1] == {"email": "a@b.com", "webhook": True, "webhookId": webhook["id"]}

    response = await client.get(f"/api/v1/webhooks/{webhook['id']}/logs")
    assert response.status_code == 200
    logs = response.json()
    assert len(logs) == 1
    assert logs[0]["success"] is True

    response = await client.post(f"/api/v1/webhooks/{webhook['id']}/test", json={"payload": {"user": {"email": "x@y.z"}}})
    assert response.json() == {"input": {"email": "x@y.z", "webhook": True, "webhookId": webhook["id"]}}


@pytest.mark.asyncio
async def test_webhook_trigger_rejections(client, services, api_workflow):
    response = await client.post(f"/api/v1/webhooks/trigger/{api_workflow.id}/nope", json={})
    assert response.status_code == 404
    assert response.json() == {"error": "Webhook not found"}

    webhook = await services.webhooks.create_webhook(api_workflow.id)
    response = await client.post(f"/api/v1/webhooks/trigger/{api_workflow.id}/nope", json={})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid secret key"}

    response = await client.post(
        f"/api/v1/webhooks/trigger/{api_workflow.id}/{webhook.secret_key}",
        content=b"[1, 2]",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_webhook_rate_limited_response(client, services, api_workflow):
    services.webhooks.rate_limiter.limit = 1
    webhook = await services.webhooks.create_webhook(api_workflow.id)
    url = f"/api/v1/webhooks/trigger/{api_workflow.id}/{webhook.secret_key}"

    assert (await client.post(url, json={})).status_code == 202
    response = await client.post(url, json={})
    assert response.status_code == 429
    assert response.json() == {"error": "Rate limit exceeded"}
    assert response.headers["Retry-After"] == "3600"


@pytest.mark.asyncio
async def test_version_endpoints(client, api_workflow):
    response = await client.post(f"/api/v1/workflows/{api_workflow.id}/versions", json={"user_id": "u1", "message": "first"})
    assert response.status_code == 201
    v1 = response.json()
    assert v1["version"] == 1

    response = await client.post(f"/api/v1/workflows/{api_workflow.id}/versions", json={"user_id": "u1"})
    v2 = response.json()
    assert v2["parent_version_id"] == v1["id"]

    response = await client.get(f"/api/v1/workflows/{api_workflow.id}/versions")
    assert [v["version"] for v in response.json()] == [2, 1]

    response = await client.get("/api/v1/versions/compare", params={"a": v1["id"], "b": v2["id"]})
    assert response.status_code == 200
    assert response.json()["diff"]["nodes_added"] == 0

    response = await client.put(f"/api/v1/versions/{v1['id']}/tag", json={"tag": "production"})
    assert response.json()["tag"] == "production"

    response = await client.get(f"/api/v1/versions/{v1['id']}/export")
    assert response.json()["name"] == "API Workflow"

    response = await client.post(f"/api/v1/workflows/{api_workflow.id}/versions/{v1['id']}/restore", json={"user_id": "u2"})
    assert response.json()["commit_message"] == "Restored from version 1"

    response = await client.get("/api/v1/versions/missing")
    assert response.status_code == 404
    assert response.json() == {"error": "Version not found"}


@pytest.mark.asyncio
async def test_schedule_endpoints(client, dispatcher, api_workflow):
    response = await client.post("/api/v1/schedules/", json={"workflow_id": api_workflow.id, "cron_expression": "bad"})
    assert response.status_code == 422

    response = await client.post("/api/v1/schedules/", json={"workflow_id": api_workflow.id, "cron_expression": "0 9 * * *"})
    assert response.status_code == 201
    schedule = response.json()
    assert schedule["timezone"] == "UTC"

    response = await client.get(f"/api/v1/schedules/{schedule['id']}/upcoming", params={"count": 2})
    assert len(response.json()["runs"]) == 2

    response = await client.post(f"/api/v1/schedules/{schedule['id']}/run")
    assert response.json() == {"schedule_id": schedule["id"], "dispatched": True}
    assert dispatcher.calls[0][2] == "schedule"

    response = await client.patch(f"/api/v1/schedules/{schedule['id']}", json={"timezone": "Nowhere/Land"})
    assert response.status_code == 422
    assert response.json() == {"error": "Unknown timezone: Nowhere/Land"}

    response = await client.delete(f"/api/v1/schedules/{schedule['id']}")
    assert response.status_code == 204

    response = await client.post(f"/api/v1/schedules/{schedule['id']}/run")
    assert response.status_code == 404
    assert response.json() == {"error": "Schedule not found"}


@pytest.mark.asyncio
async def test_webhook_gate_runs_before_body_is_decoded(client, services, api_workflow):
    webhook = await services.webhooks.create_webhook(api_workflow.id)
    await services.storage.update_webhook(webhook.id, {"enabled": False})
    headers = {"Content-Type": "application/json"}

    response = await client.post(
        f"/api/v1/webhooks/trigger/{api_workflow.id}/{webhook.secret_key}", content=b"[1,2]", headers=headers
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Webhook is disabled"}

    response = await client.post(f"/api/v1/webhooks/trigger/{api_workflow.id}/wrong", content=b"not json", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"error": "Webhook is disabled"}

    response = await client.post("/api/v1/webhooks/trigger/unknown/wrong", content=b"not json", headers=headers)
    assert response.status_code == 404
    assert response.json() == {"error": "Webhook not found"}


@pytest.mark.asyncio
async def test_webhook_wrong_secret_with_malformed_body(client, services, api_workflow):
    await services.webhooks.create_webhook(api_workflow.id)
    response = await client.post(
        f"/api/v1/webhooks/trigger/{api_workflow.id}/wrong",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid secret key"}


@pytest.mark.asyncio
async def test_webhook_body_that_is_not_utf8(client, dispatcher, services, api_workflow):
    webhook = await services.webhooks.create_webhook(api_workflow.id)
    response = await client.post(
        f"/api/v1/webhooks/trigger/{api_workflow.id}/{webhook.secret_key}",
        content=b'{"a":"\xff"}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 422
    assert response.json() == {"error": "Request body must be valid JSON"}
    assert dispatcher.calls == []

    logs = await services.webhooks.get_call_logs(webhook.id)
    assert logs[0]["success"] is False
    assert logs[0]["error"] == "Request body must be valid JSON"


@pytest.mark.asyncio
async def test_webhook_empty_body_is_empty_object(client, dispatcher, services, api_workflow):
    webhook = await services.webhooks.create_webhook(api_workflow.id)
    response = await client.post(f"/api/v1/webhooks/trigger/{api_workflow.id}/{webhook.secret_key}")
    assert response.status_code == 202
    assert dispatcher.calls[0][1] == {"webhook": True, "webhookId": webhook.id}
