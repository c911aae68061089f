"""Tailers that turn the event log and container logs into SSE messages.

Both tailers are async generators. When the client disconnects, the SSE
response cancels the generator task, and the ``finally`` blocks release
whatever upstream resource the session holds. An optional ``asyncio.Event``
gives callers a cooperative way to stop a session early.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from deploywatch.config import settings
from deploywatch.core.event_log import ProgressEventLog
from deploywatch.core.exceptions import EventStoreUnavailableError, RuntimeUnavailableError
from deploywatch.core.frames import FrameDemultiplexer
from deploywatch.models.progress import ProgressEvent
from deploywatch.services.docker_client import DockerClient
from deploywatch.utils.logging import get_logger

# Payload of the final message of every progress stream
DONE_SENTINEL = "[DONE]"

logger = get_logger(__name__)


async def _pause(seconds: float, cancel: asyncio.Event | None) -> None:
    """Sleep for ``seconds`` or until ``cancel`` is set."""
    if seconds <= 0:
        return
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


class ProgressTailer:
    """Relays one resource's progress events from the event log.

    Each session keeps its own cursor, so any number of sessions (for
    example a reconnecting client) may tail the same resource.
    """

    def __init__(
        self,
        event_log: ProgressEventLog,
        poll_interval: float | None = None,
        error_backoff: float | None = None,
        session_budget: float | None = None,
    ):
        self.event_log = event_log
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.progress_poll_interval
        )
        self.error_backoff = (
            error_backoff
            if error_backoff is not None
            else self.poll_interval * settings.progress_error_backoff_factor
        )
        self.session_budget = (
            session_budget
            if session_budget is not None
            else settings.progress_session_budget_seconds
        )

    async def events(
        self,
        resource_id: str,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Yield events in append order until a terminal event or budget expiry."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.session_budget
        cursor = 0
        relayed = 0

        logger.info("tailer.session.started", resource_id=resource_id)
        try:
            while not (cancel and cancel.is_set()):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info(
                        "tailer.session.budget_expired",
                        resource_id=resource_id,
                        relayed=relayed,
                    )
                    return

                try:
                    entries = await self.event_log.read(resource_id, cursor)
                except EventStoreUnavailableError as e:
                    logger.warning(
                        "tailer.event_store_unavailable",
                        resource_id=resource_id,
                        error=e.message,
                    )
                    await _pause(min(self.error_backoff, remaining), cancel)
                    continue

                for entry in entries:
                    cursor = entry.position + 1
                    relayed += 1
                    yield entry.event

                    if entry.event.is_terminal:
                        logger.info(
                            "tailer.session.terminal",
                            resource_id=resource_id,
                            event_type=entry.event.type.value,
                            relayed=relayed,
                        )
                        return

                if not entries:
                    await _pause(min(self.poll_interval, remaining), cancel)
        finally:
            logger.info("tailer.session.closed", resource_id=resource_id, cursor=cursor)

    async def messages(
        self,
        resource_id: str,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield SSE messages, ending with the ``[DONE]`` sentinel."""
        async for event in self.events(resource_id, cancel):
            yield {"data": event.to_wire()}
        if not (cancel and cancel.is_set()):
            yield {"data": DONE_SENTINEL}


class RawLogTailer:
    """Relays a container's live log output line by line."""

    def __init__(self, docker: DockerClient, session_budget: float | None = None):
        self.docker = docker
        self.session_budget = (
            session_budget
            if session_budget is not None
            else settings.log_stream_session_budget_seconds
        )

    async def lines(
        self,
        container_id: str,
        tail: int = 50,
        timestamps: bool = True,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Yield decoded non-empty log lines.

        Runtime failures are reported inline as ``[error] ...`` lines since
        the stream has usually started by the time they happen.
        """
        demux = FrameDemultiplexer()
        short_id = container_id[:12]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.session_budget
        logger.info("log_tailer.session.started", container_id=short_id)

        try:
            async with self.docker.follow_logs(container_id, tail, timestamps) as chunks:
                chunk_iter = aiter(chunks)
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        logger.info("log_tailer.session.budget_expired", container_id=short_id)
                        return
                    chunk = await _next_chunk(chunk_iter, cancel, remaining)
                    if chunk is _STOPPED:
                        return
                    if chunk is None:
                        break
                    for line in _split_lines(demux.decode(chunk)):
                        yield line
                for line in _split_lines(demux.flush()):
                    yield line
        except RuntimeUnavailableError as e:
            logger.warning(
                "log_tailer.runtime_error",
                container_id=short_id,
                status=e.status,
                error=e.message,
            )
            if e.status is not None:
                yield f"[error] Docker returned {e.status}"
            else:
                yield "[error] Failed to connect to Docker"
        finally:
            logger.info("log_tailer.session.closed", container_id=short_id)

    async def messages(
        self,
        container_id: str,
        tail: int = 50,
        timestamps: bool = True,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield SSE messages, ending with a ``close`` event."""
        async for line in self.lines(container_id, tail, timestamps, cancel):
            yield {"data": line}
        yield {"event": "close", "data": "stream ended"}


def _split_lines(text: str) -> list[str]:
    return [line.rstrip() for line in text.split("\n") if line.rstrip()]


# Returned by _next_chunk when the session was cancelled or ran out of budget
_STOPPED = object()


async def _read_one(chunk_iter: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(chunk_iter)
    except StopAsyncIteration:
        return None


async def _next_chunk(
    chunk_iter: AsyncIterator[bytes],
    cancel: asyncio.Event | None,
    timeout: float,
) -> Any:
    """Wait for the next chunk, the cancel signal or the timeout.

    Returns the chunk, None at end of stream, or ``_STOPPED``.
    """
    read_task = asyncio.ensure_future(_read_one(chunk_iter))
    waiters: set[asyncio.Future] = {read_task}
    cancel_task = None
    if cancel is not None:
        cancel_task = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
        if read_task in done:
            return read_task.result()
        return _STOPPED
    finally:
        for task in waiters:
            if not task.done():
                task.cancel()
        # Let the read task unwind before the stream is closed
        await asyncio.gather(*waiters, return_exceptions=True)
