"""Pytest configuration and fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

from deploywatch.api import deps
from deploywatch.core.event_log import InMemoryProgressEventLog
from deploywatch.core.reconciler import Reconciler, ReconciliationLoop
from deploywatch.core.tailer import ProgressTailer, RawLogTailer
from deploywatch.main import app
from deploywatch.models.resource import DeployedResource, DeploymentStatus
from deploywatch.services.docker_client import DockerClient
from deploywatch.services.registry import InMemoryResourceRegistry

from tests.fakes import FakeDockerEngine


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a process-wide exit event bound to the first event loop."""
    import sse_starlette.sse as sse

    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield


@pytest.fixture
def event_log() -> InMemoryProgressEventLog:
    """Create a fresh in-memory event log."""
    return InMemoryProgressEventLog()


@pytest.fixture
def registry() -> InMemoryResourceRegistry:
    """Create a fresh in-memory resource registry."""
    return InMemoryResourceRegistry()


@pytest.fixture
def docker_engine() -> FakeDockerEngine:
    return FakeDockerEngine()


@pytest.fixture
async def docker_client(docker_engine: FakeDockerEngine) -> DockerClient:
    """Docker client wired to the fake engine."""
    client = DockerClient(transport=docker_engine.transport())
    yield client
    await client.aclose()


@pytest.fixture
def running_resource() -> DeployedResource:
    return DeployedResource(
        resource_id="res-1",
        name="weather-api",
        status=DeploymentStatus.RUNNING,
        container_id="c0ffee000001",
        healthy=True,
    )


@pytest.fixture
async def client(
    event_log: InMemoryProgressEventLog,
    registry: InMemoryResourceRegistry,
    docker_client: DockerClient,
) -> AsyncClient:
    """Create an async test client backed by in-memory stores and the fake engine."""
    app.dependency_overrides[deps.get_events] = lambda: event_log
    app.dependency_overrides[deps.get_resources] = lambda: registry
    app.dependency_overrides[deps.get_docker] = lambda: docker_client
    app.dependency_overrides[deps.get_progress_tailer] = lambda: ProgressTailer(
        event_log, poll_interval=0.01, session_budget=0.5
    )
    app.dependency_overrides[deps.get_log_tailer] = lambda: RawLogTailer(
        docker_client, session_budget=2.0
    )
    # Stands in for the loop the lifespan installs; never started in tests
    app.state.reconciliation_loop = ReconciliationLoop(Reconciler(registry, docker_client))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Cleanup after test
    app.dependency_overrides.clear()
    app.state.reconciliation_loop = None
