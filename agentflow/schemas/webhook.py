from pydantic import BaseModel
from typing import List, Optional, Dict, Any
from datetime import datetime

class WebhookCreate(BaseModel):
    ip_whitelist: Optional[List[str]] = None
    payload_transformer: Optional[Dict[str, str]] = None
    enabled: bool = True

class Webhook(BaseModel):
    id: str
    workflow_id: str
    webhook_url: str
    enabled: bool
    ip_whitelist: Optional[List[str]] = None
    payload_transformer: Optional[Dict[str, str]] = None
    trigger_count: int = 0
    last_triggered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class WebhookWithSecret(Webhook):
    secret_key: str

class WebhookCallLogEntry(BaseModel):
    timestamp: datetime
    payload: Optional[Dict[str, Any]] = None
    success: bool
    execution_id: Optional[str] = None
    error: Optional[str] = None

class WebhookTestRequest(BaseModel):
    payload: Dict[str, Any] = {}

class WebhookTriggerResponse(BaseModel):
    accepted: bool
    webhook_id: str
    execution_id: Optional[str] = None
