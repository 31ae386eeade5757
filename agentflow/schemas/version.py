from pydantic import BaseModel
from typing import List, Optional, Dict, Any
from datetime import datetime

class VersionCreate(BaseModel):
    user_id: Optional[str] = None
    message: Optional[str] = None

class VersionRestore(BaseModel):
    user_id: Optional[str] = None

class VersionTag(BaseModel):
    tag: Optional[str] = None

class WorkflowVersion(BaseModel):
    id: str
    workflow_id: str
    version: int
    commit_message: str
    created_by: Optional[str] = None
    workflow_data: Dict[str, Any]
    parent_version_id: Optional[str] = None
    tag: Optional[str] = None
    execution_count: Optional[int] = 0
    success_rate: Optional[int] = 0
    avg_duration: Optional[int] = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class VersionDiff(BaseModel):
    nodes_added: int
    nodes_removed: int
    nodes_modified: int
    edges_added: int
    edges_removed: int
    agents_added: int
    agents_removed: int
    agents_modified: int

class VersionComparison(BaseModel):
    version1: WorkflowVersion
    version2: WorkflowVersion
    diff: VersionDiff

class WorkflowExport(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]]
    agents: List[Dict[str, Any]]
