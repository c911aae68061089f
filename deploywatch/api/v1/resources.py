"""Resource registry and reconciliation endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from deploywatch.api.deps import ReconciliationLoopDep, RegistryDep, ResourceDep
from deploywatch.models.resource import DeployedResource, ReconcileReport

router = APIRouter()


class ResourceListResponse(BaseModel):
    """Response for listing resources."""

    resources: list[DeployedResource]
    total: int


@router.get(
    "",
    response_model=ResourceListResponse,
    summary="List registered resources",
)
async def list_resources(registry: RegistryDep) -> ResourceListResponse:
    """List every resource the registry knows about."""
    resources = [r for r in await registry.list() if not r.deleted]
    resources.sort(key=lambda r: r.deployed_at, reverse=True)
    return ResourceListResponse(resources=resources, total=len(resources))


@router.post(
    "/reconcile",
    response_model=ReconcileReport,
    summary="Reconcile the registry with the container runtime",
)
async def reconcile(loop: ReconciliationLoopDep) -> ReconcileReport:
    """Run one reconciliation pass and return its counts.

    The pass shares its lock with the periodic loop, so it waits for a
    running timer pass instead of overlapping it.
    """
    return await loop.run_once()


@router.get(
    "/{resource_id}",
    response_model=DeployedResource,
    summary="Get resource details",
)
async def get_resource(resource: ResourceDep) -> DeployedResource:
    """Get the registry record of a resource."""
    return resource


@router.delete(
    "/{resource_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a resource",
)
async def delete_resource(resource: ResourceDep, registry: RegistryDep) -> None:
    """Mark a resource deleted; the next reconciliation pass removes it."""
    resource.deleted = True
    resource.touch()
    await registry.save(resource)
