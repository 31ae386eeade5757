from fastapi import APIRouter, Depends, Header, Request, status
from typing import List, Optional

from agentflow.api.deps import get_services
from agentflow.container import ServiceContainer
from agentflow.schemas.webhook import (
    WebhookCreate,
    WebhookWithSecret,
    WebhookCallLogEntry,
    WebhookTestRequest,
    WebhookTriggerResponse,
)

router = APIRouter()

@router.post("/trigger/{workflow_id}/{secret_key}", response_model=WebhookTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_webhook(
    workflow_id: str,
    secret_key: str,
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    services: ServiceContainer = Depends(get_services)
):
    # The body is decoded by the service after the security checks
    raw_body = await request.body()
    result = await services.webhooks.trigger(
        workflow_id,
        secret_key,
        client_ip=request.client.host if request.client else None,
        raw_body=raw_body,
        signature=x_webhook_signature,
    )
    return WebhookTriggerResponse(accepted=result.accepted, webhook_id=result.webhook_id, execution_id=result.execution_id)

@router.post("/workflows/{workflow_id}", response_model=WebhookWithSecret, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    workflow_id: str,
    webhook_in: WebhookCreate,
    services: ServiceContainer = Depends(get_services)
):
    return await services.webhooks.create_webhook(
        workflow_id,
        ip_whitelist=webhook_in.ip_whitelist,
        payload_transformer=webhook_in.payload_transformer,
        enabled=webhook_in.enabled,
    )

@router.post("/{webhook_id}/regenerate", response_model=WebhookWithSecret)
async def regenerate_secret(
    webhook_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.webhooks.regenerate_secret(webhook_id)

@router.get("/{webhook_id}/logs", response_model=List[WebhookCallLogEntry])
async def get_webhook_logs(
    webhook_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.webhooks.get_call_logs(webhook_id)

@router.post("/{webhook_id}/test")
async def test_webhook(
    webhook_id: str,
    request_in: WebhookTestRequest,
    services: ServiceContainer = Depends(get_services)
):
    transformed = await services.webhooks.test_webhook(webhook_id, request_in.payload)
    return {"input": transformed}
