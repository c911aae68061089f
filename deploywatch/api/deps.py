"""Dependency injection for API endpoints."""

from typing import Annotated

from fastapi import Depends, Request

from deploywatch.core.event_log import ProgressEventLog, get_event_log
from deploywatch.core.exceptions import ContainerNotAssignedError, ResourceNotFoundError
from deploywatch.core.reconciler import Reconciler, ReconciliationLoop
from deploywatch.core.tailer import ProgressTailer, RawLogTailer
from deploywatch.models.resource import DeployedResource
from deploywatch.services.docker_client import DockerClient, get_docker_client
from deploywatch.services.registry import ResourceRegistry, get_registry


async def get_events() -> ProgressEventLog:
    """Get the progress event log."""
    return get_event_log()


async def get_resources() -> ResourceRegistry:
    """Get the resource registry."""
    return get_registry()


async def get_docker() -> DockerClient:
    """Get the Docker client."""
    return get_docker_client()


EventLogDep = Annotated[ProgressEventLog, Depends(get_events)]
RegistryDep = Annotated[ResourceRegistry, Depends(get_resources)]
DockerDep = Annotated[DockerClient, Depends(get_docker)]


async def get_progress_tailer(event_log: EventLogDep) -> ProgressTailer:
    """Build a progress tailer over the event log."""
    return ProgressTailer(event_log)


async def get_log_tailer(docker: DockerDep) -> RawLogTailer:
    """Build a raw log tailer over the Docker client."""
    return RawLogTailer(docker)


async def get_reconciliation_loop(
    request: Request, registry: RegistryDep, docker: DockerDep
) -> ReconciliationLoop:
    """Get the app-wide reconciliation loop.

    The lifespan installs it on ``app.state``; without a lifespan one is
    created on first use and kept there, so every pass shares one lock.
    """
    loop = getattr(request.app.state, "reconciliation_loop", None)
    if loop is None:
        loop = ReconciliationLoop(Reconciler(registry, docker))
        request.app.state.reconciliation_loop = loop
    return loop


async def get_resource_by_id(resource_id: str, registry: RegistryDep) -> DeployedResource:
    """Get a resource by ID or raise 404."""
    resource = await registry.get(resource_id)
    if resource is None or resource.deleted:
        raise ResourceNotFoundError(resource_id)
    return resource


async def get_container_id(resource_id: str, registry: ResourceRegistry) -> str:
    """Resolve the container backing a resource or raise 404."""
    resource = await get_resource_by_id(resource_id, registry)
    if not resource.container_id:
        raise ContainerNotAssignedError(resource_id)
    return resource.container_id


# Type aliases for cleaner signatures
ProgressTailerDep = Annotated[ProgressTailer, Depends(get_progress_tailer)]
LogTailerDep = Annotated[RawLogTailer, Depends(get_log_tailer)]
ReconciliationLoopDep = Annotated[ReconciliationLoop, Depends(get_reconciliation_loop)]
ResourceDep = Annotated[DeployedResource, Depends(get_resource_by_id)]
