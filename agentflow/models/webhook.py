from sqlalchemy import String, JSON, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from datetime import datetime
from typing import Optional, List, Dict
from agentflow.database import Base
import uuid

class WorkflowWebhook(Base):
    __tablename__ = "workflow_webhooks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id: Mapped[str] = mapped_column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, unique=True)
    webhook_url: Mapped[str] = mapped_column(String, nullable=False)
    secret_key: Mapped[str] = mapped_column(String(64), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ip_whitelist: Mapped[Optional[List[str]]] = mapped_column(JSON)
    payload_transformer: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON)
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    call_logs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # newest first
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
