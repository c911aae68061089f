"""Integration tests for API endpoints."""

import asyncio

import pytest
from httpx import AsyncClient

from deploywatch.core.event_log import InMemoryProgressEventLog
from deploywatch.core.reconciler import Reconciler, ReconciliationLoop
from deploywatch.main import app
from deploywatch.models.progress import ProgressEventType
from deploywatch.models.resource import DeployedResource, DeploymentStatus
from deploywatch.services.docker_client import DockerClient
from deploywatch.services.registry import InMemoryResourceRegistry

from tests.fakes import FakeDockerEngine, frame, make_event


def _data_lines(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


class SlowRegistry(InMemoryResourceRegistry):
    """Registry whose listing takes a while and records overlapping callers."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.max_active = 0

    async def list(self):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.05)
            return await super().list()
        finally:
            self.active -= 1


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Test health check returns healthy status."""
        response = await client.get("/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "environment" in data
        assert "timestamp" in data
        assert set(data["checks"]) == {"event_store", "registry", "docker"}

    @pytest.mark.asyncio
    async def test_health_degraded_without_docker(
        self, client: AsyncClient, docker_engine: FakeDockerEngine
    ):
        docker_engine.unreachable = True

        response = await client.get("/v1/health")

        data = response.json()
        assert data["status"] == "degraded"
        assert data["checks"]["docker"]["status"] == "unhealthy"
        assert data["checks"]["registry"]["status"] == "healthy"


class TestDeployProgressEndpoint:
    """Tests for the progress SSE endpoint."""

    @pytest.mark.asyncio
    async def test_missing_id(self, client: AsyncClient):
        response = await client.get("/v1/deploy-progress")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATIONERROR"

    @pytest.mark.asyncio
    async def test_streams_events_then_done(
        self, client: AsyncClient, event_log: InMemoryProgressEventLog
    ):
        for event_type in (
            ProgressEventType.BUILDING,
            ProgressEventType.CONTAINER_STARTED,
            ProgressEventType.COMPLETE,
        ):
            await event_log.append("res-1", make_event("res-1", event_type))

        response = await client.get("/v1/deploy-progress", params={"id": "res-1"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        data = _data_lines(response.text)
        assert len(data) == 4
        assert '"type":"building"' in data[0]
        assert '"type":"complete"' in data[2]
        assert data[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_unknown_resource_times_out_with_done(self, client: AsyncClient):
        response = await client.get("/v1/deploy-progress", params={"id": "not-yet-known"})

        assert response.status_code == 200
        assert _data_lines(response.text) == ["[DONE]"]


class TestLogsEndpoints:
    """Tests for container log endpoints."""

    @pytest.mark.asyncio
    async def test_stream_missing_id(self, client: AsyncClient):
        response = await client.get("/v1/logs/stream")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_stream_unknown_resource(self, client: AsyncClient):
        response = await client.get("/v1/logs/stream", params={"id": "missing"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESOURCENOTFOUNDERROR"

    @pytest.mark.asyncio
    async def test_stream_resource_without_container(
        self, client: AsyncClient, registry: InMemoryResourceRegistry
    ):
        await registry.save(
            DeployedResource(resource_id="res-2", status=DeploymentStatus.BUILDING)
        )

        response = await client.get("/v1/logs/stream", params={"id": "res-2"})

        assert response.status_code == 404
        assert "no container" in response.json()["error"]["message"]

    @pytest.mark.asyncio
    async def test_stream_lines(
        self,
        client: AsyncClient,
        registry: InMemoryResourceRegistry,
        docker_engine: FakeDockerEngine,
        running_resource: DeployedResource,
    ):
        await registry.save(running_resource)
        docker_engine.add_container(running_resource.container_id, "res-1")
        docker_engine.log_chunks[running_resource.container_id] = [
            frame(1, b"listening on :8080\n"),
            frame(2, b"GET /weather 402\n"),
        ]

        response = await client.get("/v1/logs/stream", params={"id": "res-1", "tail": 10})

        assert response.status_code == 200
        assert response.headers["x-container-id"] == running_resource.container_id
        assert _data_lines(response.text) == [
            "listening on :8080",
            "GET /weather 402",
            "stream ended",
        ]
        assert "event: close" in response.text

    @pytest.mark.asyncio
    async def test_stream_reports_runtime_error_inline(
        self,
        client: AsyncClient,
        registry: InMemoryResourceRegistry,
        docker_engine: FakeDockerEngine,
        running_resource: DeployedResource,
    ):
        await registry.save(running_resource)
        docker_engine.log_status[running_resource.container_id] = 404

        response = await client.get("/v1/logs/stream", params={"id": "res-1"})

        assert response.status_code == 200
        assert _data_lines(response.text)[0] == "[error] Docker returned 404"

    @pytest.mark.asyncio
    async def test_recent_logs(
        self,
        client: AsyncClient,
        registry: InMemoryResourceRegistry,
        docker_engine: FakeDockerEngine,
        running_resource: DeployedResource,
    ):
        await registry.save(running_resource)
        docker_engine.add_container(running_resource.container_id, "res-1")
        docker_engine.log_chunks[running_resource.container_id] = [
            frame(1, b"one\n\n"),
            frame(2, b"two  \n"),
        ]

        response = await client.get("/v1/logs", params={"id": "res-1"})

        assert response.status_code == 200
        assert response.json() == {
            "resource_id": "res-1",
            "container_id": running_resource.container_id,
            "lines": ["one", "two"],
        }

    @pytest.mark.asyncio
    async def test_recent_logs_runtime_down(
        self,
        client: AsyncClient,
        registry: InMemoryResourceRegistry,
        docker_engine: FakeDockerEngine,
        running_resource: DeployedResource,
    ):
        await registry.save(running_resource)
        docker_engine.unreachable = True

        response = await client.get("/v1/logs", params={"id": "res-1"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "RUNTIMEUNAVAILABLEERROR"


class TestResourcesEndpoints:
    """Tests for registry and reconciliation endpoints."""

    @pytest.mark.asyncio
    async def test_get_and_list(
        self,
        client: AsyncClient,
        registry: InMemoryResourceRegistry,
        running_resource: DeployedResource,
    ):
        await registry.save(running_resource)

        list_response = await client.get("/v1/resources")
        get_response = await client.get("/v1/resources/res-1")

        assert list_response.json()["total"] == 1
        assert get_response.status_code == 200
        assert get_response.json()["name"] == "weather-api"

    @pytest.mark.asyncio
    async def test_get_missing(self, client: AsyncClient):
        response = await client.get("/v1/resources/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_then_reconcile(
        self,
        client: AsyncClient,
        registry: InMemoryResourceRegistry,
        docker_engine: FakeDockerEngine,
        running_resource: DeployedResource,
    ):
        await registry.save(running_resource)
        docker_engine.add_container(running_resource.container_id, "res-1")

        response = await client.delete("/v1/resources/res-1")
        assert response.status_code == 204
        assert (await client.get("/v1/resources/res-1")).status_code == 404

        response = await client.post("/v1/resources/reconcile")

        assert response.status_code == 200
        assert response.json() == {
            "total": 1,
            "healthy": 0,
            "recovered": 0,
            "lost": 0,
            "cleaned": 1,
            "errors": 0,
        }
        assert await registry.get("res-1") is None
        assert docker_engine.removed_containers == [running_resource.container_id]

    @pytest.mark.asyncio
    async def test_reconcile_updates_health_summary(self, client: AsyncClient):
        before = (await client.get("/v1/health")).json()
        assert before["last_reconcile"] is None

        await client.post("/v1/resources/reconcile")

        after = (await client.get("/v1/health")).json()
        assert after["last_reconcile"]["report"]["total"] == 0
        assert after["last_reconcile"]["ran_at"] is not None

    @pytest.mark.asyncio
    async def test_operator_pass_waits_for_timer_pass(
        self, client: AsyncClient, docker_client: DockerClient
    ):
        registry = SlowRegistry()
        loop = ReconciliationLoop(Reconciler(registry, docker_client))
        app.state.reconciliation_loop = loop

        response, timer_report = await asyncio.gather(
            client.post("/v1/resources/reconcile"),
            loop.run_once(),
        )

        assert response.status_code == 200
        assert timer_report.errors == 0
        assert registry.max_active == 1
        assert loop.last_report is not None
