"""Container log endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from deploywatch.api.deps import DockerDep, LogTailerDep, RegistryDep, get_container_id
from deploywatch.config import settings
from deploywatch.core.exceptions import ValidationError
from deploywatch.core.frames import strip_frame_headers

router = APIRouter()


class LogsResponse(BaseModel):
    """Bounded snapshot of a container's logs."""

    resource_id: str
    container_id: str
    lines: list[str]


def _require_id(resource_id: str | None) -> str:
    if not resource_id:
        raise ValidationError("Missing id parameter", {"parameter": "id"})
    return resource_id


@router.get(
    "",
    response_model=LogsResponse,
    summary="Fetch recent container logs",
)
async def get_logs(
    registry: RegistryDep,
    docker: DockerDep,
    resource_id: Annotated[str | None, Query(alias="id")] = None,
    tail: Annotated[int, Query(ge=0, le=5000)] = 100,
) -> LogsResponse:
    """Return the last ``tail`` log lines of the resource's container."""
    resource_id = _require_id(resource_id)
    container_id = await get_container_id(resource_id, registry)

    raw = await docker.get_logs(container_id, tail=tail)
    lines = [line.rstrip() for line in strip_frame_headers(raw).split("\n") if line.rstrip()]

    return LogsResponse(resource_id=resource_id, container_id=container_id, lines=lines)


@router.get(
    "/stream",
    summary="Stream container logs (SSE)",
    description=(
        "Follows the container's stdout/stderr and relays one SSE message per "
        "line. Runtime failures after the stream starts are sent inline as "
        "`[error] ...` lines; the stream ends with a `close` event."
    ),
)
async def stream_logs(
    registry: RegistryDep,
    tailer: LogTailerDep,
    resource_id: Annotated[str | None, Query(alias="id")] = None,
    tail: Annotated[int | None, Query(ge=0, le=5000)] = None,
    timestamps: bool = True,
) -> EventSourceResponse:
    """Stream live container logs for one resource."""
    resource_id = _require_id(resource_id)
    container_id = await get_container_id(resource_id, registry)
    if tail is None:
        tail = settings.log_stream_default_tail

    return EventSourceResponse(
        tailer.messages(container_id, tail=tail, timestamps=timestamps),
        sep="\n",
        headers={
            "X-Resource-Id": resource_id,
            "X-Container-Id": container_id,
        },
    )
