from sqlalchemy import String, Text, JSON, DateTime, Float, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from datetime import datetime
from typing import Optional, Dict, Any, List
from agentflow.database import Base
import uuid

class Workflow(Base):
    __tablename__ = "workflows"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[Optional[str]] = mapped_column(String)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # Contains nodes and edges
    status: Mapped[str] = mapped_column(String, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def nodes(self) -> List[Dict[str, Any]]:
        return list((self.definition or {}).get("nodes", []))

    @property
    def edges(self) -> List[Dict[str, Any]]:
        return list((self.definition or {}).get("edges", []))

class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id: Mapped[str] = mapped_column(String, ForeignKey("workflows.id", ondelete="CASCADE"), index=True)
    node_id: Mapped[Optional[str]] = mapped_column(String)
    name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    provider: Mapped[Optional[str]] = mapped_column(String)
    model: Mapped[Optional[str]] = mapped_column(String)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text)
    temperature: Mapped[Optional[float]] = mapped_column(Float)
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer)
    capabilities: Mapped[Optional[list]] = mapped_column(JSON)
    position: Mapped[Optional[dict]] = mapped_column(JSON)

    SNAPSHOT_FIELDS = (
        "id", "node_id", "name", "role", "description", "provider", "model",
        "system_prompt", "temperature", "max_tokens", "capabilities", "position",
    )

    def to_snapshot(self) -> Dict[str, Any]:
        return {field: getattr(self, field) for field in self.SNAPSHOT_FIELDS}
