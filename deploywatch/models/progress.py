"""Deploy progress event models.

Events are written by the deploy worker and relayed verbatim to clients, so
the wire form keeps the worker's camelCase keys.
"""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now_ms() -> int:
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProgressEventType(str, Enum):
    """Lifecycle event types emitted during a deployment."""

    BUILDING = "building"
    CONTAINER_STARTED = "container_started"
    TESTING = "testing"
    TEST_RESULT = "test_result"
    MINTING_IDENTITY = "minting_identity"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Whether no further event is valid after this one."""
        return self in TERMINAL_EVENT_TYPES


TERMINAL_EVENT_TYPES = frozenset({ProgressEventType.COMPLETE, ProgressEventType.ERROR})


class EndpointTestResult(WireModel):
    """Outcome of one post-deploy endpoint test."""

    test_type: str
    passed: bool
    duration_ms: int = 0
    ai_score: float | None = None
    ai_status: str | None = None
    ai_notes: str | None = None
    test_input: Any = None
    tx_signature: str | None = None
    price_cents: int | None = None
    price_usdc: float | None = None
    response_status: int | None = None
    response_preview: str | None = None


class EndpointInfo(WireModel):
    """An endpoint exposed by a deployed resource."""

    path: str
    method: str
    price_usdc: float | None = None


class ProgressEvent(WireModel):
    """One immutable fact about a deployment."""

    type: ProgressEventType
    resource_id: str = Field(..., min_length=1)
    resource_name: str | None = None
    test: EndpointTestResult | None = None
    endpoints: list[EndpointInfo] | None = None
    public_url: str | None = None
    error: str | None = None
    timestamp: int = Field(default_factory=_now_ms)

    @property
    def is_terminal(self) -> bool:
        return self.type.is_terminal

    def to_wire(self) -> str:
        """Serialize to the JSON body of a wire message."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class LoggedEvent(BaseModel):
    """A progress event paired with its position in the resource's log."""

    position: int = Field(..., ge=0)
    event: ProgressEvent
