from fastapi import APIRouter, Depends, status
from typing import List

from agentflow.api.deps import get_services
from agentflow.container import ServiceContainer
from agentflow.core.errors import NotFoundError
from agentflow.schemas.version import (
    VersionCreate,
    VersionRestore,
    VersionTag,
    WorkflowVersion,
    VersionComparison,
    VersionDiff,
    WorkflowExport,
)

router = APIRouter()

@router.post("/workflows/{workflow_id}/versions", response_model=WorkflowVersion, status_code=status.HTTP_201_CREATED)
async def create_version(
    workflow_id: str,
    version_in: VersionCreate,
    services: ServiceContainer = Depends(get_services)
):
    return await services.versions.create_version(workflow_id, version_in.user_id, version_in.message)

@router.get("/workflows/{workflow_id}/versions", response_model=List[WorkflowVersion])
async def get_versions(
    workflow_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.versions.get_versions(workflow_id)

@router.post("/workflows/{workflow_id}/versions/{version_id}/restore", response_model=WorkflowVersion)
async def restore_version(
    workflow_id: str,
    version_id: str,
    restore_in: VersionRestore,
    services: ServiceContainer = Depends(get_services)
):
    return await services.versions.restore_version(workflow_id, version_id, restore_in.user_id)

@router.get("/versions/compare", response_model=VersionComparison)
async def compare_versions(
    a: str,
    b: str,
    services: ServiceContainer = Depends(get_services)
):
    comparison = await services.versions.compare_versions(a, b)
    return VersionComparison(
        version1=WorkflowVersion.model_validate(comparison.version1),
        version2=WorkflowVersion.model_validate(comparison.version2),
        diff=VersionDiff(**comparison.diff.to_dict()),
    )

@router.get("/versions/{version_id}", response_model=WorkflowVersion)
async def get_version(
    version_id: str,
    services: ServiceContainer = Depends(get_services)
):
    version = await services.versions.get_version(version_id)
    if not version:
        raise NotFoundError("Version not found")
    return version

@router.put("/versions/{version_id}/tag", response_model=WorkflowVersion)
async def tag_version(
    version_id: str,
    tag_in: VersionTag,
    services: ServiceContainer = Depends(get_services)
):
    return await services.versions.tag_version(version_id, tag_in.tag)

@router.get("/versions/{version_id}/export", response_model=WorkflowExport)
async def export_version(
    version_id: str,
    services: ServiceContainer = Depends(get_services)
):
    return await services.versions.export_version(version_id)
