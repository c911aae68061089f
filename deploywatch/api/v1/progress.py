"""Deploy progress streaming endpoint."""

from typing import Annotated

from fastapi import APIRouter, Query
from sse_starlette.sse import EventSourceResponse

from deploywatch.api.deps import ProgressTailerDep
from deploywatch.core.exceptions import ValidationError

router = APIRouter()


@router.get(
    "",
    summary="Stream deploy progress events (SSE)",
    description=(
        "Relays the resource's progress events in append order as "
        "`data: <json>` messages and ends with `data: [DONE]` after a terminal "
        "event or when the session budget runs out."
    ),
)
async def stream_deploy_progress(
    tailer: ProgressTailerDep,
    resource_id: Annotated[str | None, Query(alias="id")] = None,
) -> EventSourceResponse:
    """Stream deploy progress for one resource using Server-Sent Events."""
    # Events may be written before the resource is registered, so an unknown
    # ID is not rejected here; the session budget bounds the wait instead.
    if not resource_id:
        raise ValidationError("id parameter required", {"parameter": "id"})

    return EventSourceResponse(tailer.messages(resource_id), sep="\n")
