"""Client-side deploy progress tracking.

A ``DeployProgressTracker`` is owned by the presentation root and shared
through it. It keeps one ``ActiveDeploy`` per observed resource and at most
one open progress stream per resource.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Mapping
from enum import Enum
from types import MappingProxyType

import httpx
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from deploywatch.config import settings
from deploywatch.core.tailer import DONE_SENTINEL
from deploywatch.models.progress import ProgressEvent, ProgressEventType, WireModel
from deploywatch.utils.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[str, "ActiveDeploy"], None]


class DeployStatus(str, Enum):
    """Status of a deploy as shown to the user."""

    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({DeployStatus.COMPLETE, DeployStatus.ERROR})


def next_status(current: DeployStatus, event_type: ProgressEventType) -> DeployStatus:
    """Status after receiving an event of ``event_type``.

    Terminal status is sticky: once a deploy is complete or errored, no later
    event moves it, including late out-of-order arrivals such as a delayed
    ``minting_identity``.
    """
    if current in TERMINAL_STATUSES:
        return current
    if event_type == ProgressEventType.COMPLETE:
        return DeployStatus.COMPLETE
    if event_type == ProgressEventType.ERROR:
        return DeployStatus.ERROR
    return DeployStatus.IN_PROGRESS


class ActiveDeploy(WireModel):
    """A deploy currently (or most recently) observed by the client."""

    resource_id: str
    resource_name: str
    events: list[ProgressEvent] = Field(default_factory=list)
    status: DeployStatus = DeployStatus.IN_PROGRESS
    started_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    public_url: str | None = None

    def apply(self, event: ProgressEvent) -> None:
        """Append an event and recompute derived state."""
        self.events.append(event)
        self.status = next_status(self.status, event.type)
        if event.resource_name:
            self.resource_name = event.resource_name
        if event.public_url:
            self.public_url = event.public_url


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data of unnamed SSE messages from a line iterator.

    Comment lines (keep-alive pings) and named events are skipped.
    """
    data: list[str] = []
    event = None
    async for line in lines:
        if line == "":
            if data and event in (None, "message"):
                yield "\n".join(data)
            data, event = [], None
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data.append(value)
        elif name == "event":
            event = value
    if data and event in (None, "message"):
        yield "\n".join(data)


class DeployProgressTracker:
    """Subscription registry and state machine for deploy progress.

    Example:
        >>> async with httpx.AsyncClient(base_url="http://localhost:8000") as http:
        ...     tracker = DeployProgressTracker(http)
        ...     tracker.subscribe("res-1", "weather-api")
        ...     await tracker.wait("res-1")
        ...     tracker.get("res-1").status
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        progress_path: str = "/v1/deploy-progress",
        session_budget: float | None = None,
    ):
        self._http = http_client
        self.progress_path = progress_path
        self.session_budget = (
            session_budget
            if session_budget is not None
            else settings.progress_session_budget_seconds
        )
        self._deploys: dict[str, ActiveDeploy] = {}
        self._subscriptions: dict[str, asyncio.Task | None] = {}
        self._listeners: list[Listener] = []

    @property
    def deploys(self) -> Mapping[str, ActiveDeploy]:
        """Read-only view of deploys keyed by resource ID."""
        return MappingProxyType(self._deploys)

    def get(self, resource_id: str) -> ActiveDeploy | None:
        return self._deploys.get(resource_id)

    def is_subscribed(self, resource_id: str) -> bool:
        return resource_id in self._subscriptions

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(
        self,
        resource_id: str,
        resource_name: str = "",
        *,
        connect: bool = True,
    ) -> bool:
        """Start following a resource's deploy progress.

        Returns False without doing anything if the resource is already
        subscribed. With ``connect=False`` only the bookkeeping is set up and
        messages are expected through ``handle_message``.
        """
        if resource_id in self._subscriptions:
            return False

        self._deploys[resource_id] = ActiveDeploy(
            resource_id=resource_id,
            resource_name=resource_name or resource_id,
        )
        self._subscriptions[resource_id] = (
            asyncio.create_task(self._consume(resource_id)) if connect else None
        )
        logger.info("progress_client.subscribed", resource_id=resource_id)
        self._notify(resource_id)
        return True

    def handle_message(self, resource_id: str, data: str) -> bool:
        """Apply one wire message. Returns False once the stream has ended."""
        if data == DONE_SENTINEL:
            self._teardown(resource_id)
            return False

        try:
            event = ProgressEvent.model_validate_json(data)
        except PydanticValidationError:
            logger.debug("progress_client.unparseable_message", resource_id=resource_id)
            return True

        deploy = self._deploys.get(resource_id)
        if deploy is None:
            return True

        deploy.apply(event)
        self._notify(resource_id)
        return True

    async def wait(self, resource_id: str) -> ActiveDeploy | None:
        """Wait for the resource's subscription to end."""
        task = self._subscriptions.get(resource_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._deploys.get(resource_id)

    def forget(self, resource_id: str) -> None:
        """Drop a deploy entirely, for example when its view unmounts."""
        task = self._subscriptions.pop(resource_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._deploys.pop(resource_id, None)

    async def close(self) -> None:
        """Cancel every open subscription. Accumulated deploys are kept."""
        tasks = [t for t in self._subscriptions.values() if t is not None]
        self._subscriptions.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _teardown(self, resource_id: str) -> None:
        if self._subscriptions.pop(resource_id, "missing") != "missing":
            logger.info("progress_client.unsubscribed", resource_id=resource_id)

    def _notify(self, resource_id: str) -> None:
        deploy = self._deploys.get(resource_id)
        if deploy is None:
            return
        for listener in list(self._listeners):
            try:
                listener(resource_id, deploy)
            except Exception:
                logger.exception("progress_client.listener_failed", resource_id=resource_id)

    async def _consume(self, resource_id: str) -> None:
        task = asyncio.current_task()
        try:
            await asyncio.wait_for(self._stream(resource_id), timeout=self.session_budget)
        except asyncio.TimeoutError:
            logger.info("progress_client.timeout", resource_id=resource_id)
        except httpx.HTTPError as e:
            logger.warning(
                "progress_client.connection_error",
                resource_id=resource_id,
                error=str(e) or type(e).__name__,
            )
        finally:
            # A newer subscription may already own the slot
            if self._subscriptions.get(resource_id) is task:
                self._teardown(resource_id)

    async def _stream(self, resource_id: str) -> None:
        async with self._http.stream(
            "GET",
            self.progress_path,
            params={"id": resource_id},
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(10.0, read=None),
        ) as response:
            if response.status_code != 200:
                logger.warning(
                    "progress_client.bad_status",
                    resource_id=resource_id,
                    status_code=response.status_code,
                )
                return
            async for data in iter_sse_data(response.aiter_lines()):
                if not self.handle_message(resource_id, data):
                    return
