"""Async client for the Docker Engine API over its Unix socket."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

import httpx

from deploywatch.config import settings
from deploywatch.core.exceptions import ContainerNotFoundError, RuntimeUnavailableError
from deploywatch.models.resource import ContainerStatus, RuntimeContainer
from deploywatch.utils.logging import get_logger

logger = get_logger(__name__)


class DockerClient:
    """Thin wrapper around the Docker Engine HTTP API.

    Transport failures surface as ``RuntimeUnavailableError``; a container
    the daemon does not know surfaces as ``ContainerNotFoundError``.
    """

    def __init__(
        self,
        socket_path: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_version = api_version or settings.docker_api_version
        self._timeout = timeout or settings.docker_timeout_seconds
        if transport is None:
            transport = httpx.AsyncHTTPTransport(
                uds=socket_path or settings.docker_socket_path
            )
        # Host is ignored when talking over the socket
        self._client = httpx.AsyncClient(
            transport=transport,
            base_url=f"http://docker/{self.api_version}",
            timeout=self._timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(str(e) or type(e).__name__) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise RuntimeUnavailableError(
                f"Docker API error: {response.status_code} - {response.text[:200]}",
                status=response.status_code,
            )

    async def ping(self) -> bool:
        """Check that the daemon answers."""
        try:
            response = await self._request("GET", "/_ping")
        except RuntimeUnavailableError:
            return False
        return response.status_code == 200

    async def list_resource_containers(
        self,
        label_key: str | None = None,
        resource_type: str | None = None,
        id_label_key: str | None = None,
    ) -> list[RuntimeContainer]:
        """List every container (running or not) carrying the system label."""
        label_key = label_key or settings.resource_label_key
        resource_type = resource_type or settings.resource_type
        id_label_key = id_label_key or settings.resource_id_label_key

        filters = json.dumps({"label": [f"{label_key}={resource_type}"]})
        response = await self._request(
            "GET", "/containers/json", params={"all": "true", "filters": filters}
        )
        self._raise_for_status(response)

        containers = []
        for item in response.json() or []:
            labels = item.get("Labels") or {}
            containers.append(
                RuntimeContainer(
                    id=item["Id"],
                    resource_id=labels.get(id_label_key),
                    state=item.get("State", "unknown"),
                    created=item.get("Created", 0),
                )
            )
        return containers

    async def inspect_container(self, container_id: str) -> ContainerStatus:
        """Get the running and health state of one container."""
        response = await self._request("GET", f"/containers/{container_id}/json")
        if response.status_code == 404:
            raise ContainerNotFoundError(container_id)
        self._raise_for_status(response)

        state = response.json().get("State", {})
        running = bool(state.get("Running"))
        health = (state.get("Health") or {}).get("Status")
        return ContainerStatus(
            running=running,
            healthy=health == "healthy",
            exit_code=None if running else state.get("ExitCode"),
        )

    async def remove_container(self, container_id: str, force: bool = True) -> bool:
        """Remove a container. Returns False if it was already gone."""
        response = await self._request(
            "DELETE",
            f"/containers/{container_id}",
            params={"force": str(force).lower(), "v": "true"},
        )
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return True

    async def remove_image(self, image: str) -> bool:
        """Remove an image. Returns False if it was already gone."""
        response = await self._request("DELETE", f"/images/{image}", params={"force": "true"})
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return True

    def _log_params(self, follow: bool, tail: int, timestamps: bool) -> dict[str, str]:
        return {
            "follow": str(follow).lower(),
            "stdout": "true",
            "stderr": "true",
            "tail": str(tail),
            "timestamps": str(timestamps).lower(),
        }

    async def get_logs(self, container_id: str, tail: int = 100) -> bytes:
        """Fetch the last ``tail`` lines as raw multiplexed bytes."""
        response = await self._request(
            "GET",
            f"/containers/{container_id}/logs",
            params=self._log_params(False, tail, False),
        )
        if response.status_code == 404:
            raise ContainerNotFoundError(container_id)
        self._raise_for_status(response)
        return response.content

    @asynccontextmanager
    async def follow_logs(
        self,
        container_id: str,
        tail: int = 50,
        timestamps: bool = True,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a follow-mode log stream.

        Yields an iterator of raw byte chunks. The upstream connection is
        closed when the context exits, including on cancellation.
        """
        request = self._client.build_request(
            "GET",
            f"/containers/{container_id}/logs",
            params=self._log_params(True, tail, timestamps),
            # No read timeout: a quiet container may not log for a long time
            timeout=httpx.Timeout(self._timeout, read=None),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(str(e) or type(e).__name__) from e

        try:
            if response.status_code >= 400:
                raise RuntimeUnavailableError(
                    f"Docker returned {response.status_code}",
                    status=response.status_code,
                )
            logger.debug("docker.follow_logs.opened", container_id=container_id[:12])
            yield self._iter_chunks(response)
        finally:
            await response.aclose()
            logger.debug("docker.follow_logs.closed", container_id=container_id[:12])

    @staticmethod
    async def _iter_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(str(e) or type(e).__name__) from e


@lru_cache
def get_docker_client() -> DockerClient:
    """Get the Docker client singleton."""
    return DockerClient()
