from sqlalchemy import String, Text, JSON, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from datetime import datetime
from typing import Optional
from agentflow.database import Base
import uuid

class WorkflowVersion(Base):
    __tablename__ = "workflow_versions"
    __table_args__ = (
        UniqueConstraint("workflow_id", "version", name="uq_workflow_versions_workflow_version"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id: Mapped[str] = mapped_column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    commit_message: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String)
    # Frozen copy of name, description, nodes, edges and agents
    workflow_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    parent_version_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("workflow_versions.id"))
    tag: Mapped[Optional[str]] = mapped_column(String)
    execution_count: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    success_rate: Mapped[Optional[int]] = mapped_column(Integer, default=0)  # 0-100
    avg_duration: Mapped[Optional[int]] = mapped_column(Integer, default=0)  # in milliseconds
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
