"""Server-sent-events relay from upstream to the client.

A reader task splits the upstream body into lines and a heartbeat task emits
SSE comments on a fixed cadence. Both feed one queue; ``events()`` is the only
place that yields to the client, so writes never interleave mid-line.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import AsyncIterator, Optional, Tuple

import anyio
import httpx
from fastapi.responses import StreamingResponse

from .body_reader import decoder_for_response
from .errors import DecodeError

logger = logging.getLogger(__name__)

HEARTBEAT = b": heartbeat\n\n"

STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

_DATA = "data"
_HEARTBEAT = "heartbeat"
_CLOSE = "close"


class RelayState(enum.Enum):
    STREAMING = "streaming"
    CLOSED = "closed"


class StreamRelay:
    def __init__(
        self,
        upstream: httpx.Response,
        heartbeat_interval: float = 15.0,
        queue_size: int = 64,
    ):
        self.upstream = upstream
        self.status_code = upstream.status_code
        self.heartbeat_interval = heartbeat_interval
        self.state = RelayState.STREAMING
        self.close_reason: Optional[str] = None
        self.lines_forwarded = 0
        self.heartbeats_sent = 0
        self._queue: asyncio.Queue[Tuple[str, object]] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    async def _emit_lines(self, pending: bytearray):
        while True:
            idx = pending.find(b"\n")
            if idx < 0:
                return
            line = bytes(pending[: idx + 1])
            del pending[: idx + 1]
            if line.strip():
                await self._queue.put((_DATA, line))

    async def _read_upstream(self):
        decoder = decoder_for_response(self.upstream)
        pending = bytearray()
        reason = "eof"
        try:
            async for chunk in self.upstream.aiter_raw():
                pending += decoder.decode(chunk)
                await self._emit_lines(pending)
            pending += decoder.flush()
            await self._emit_lines(pending)
            if pending.strip():
                logger.warning(
                    "Discarding %d byte(s) of unterminated line at end of stream",
                    len(pending),
                )
            logger.info("Upstream stream ended")
        except (httpx.HTTPError, DecodeError) as exc:
            reason = "read_error"
            logger.error("Error reading stream: %s", exc)
        except Exception:  # noqa: BLE001
            reason = "read_error"
            logger.exception("Unexpected error reading stream")
        await self._queue.put((_CLOSE, reason))

    async def _heartbeat(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self._queue.put((_HEARTBEAT, HEARTBEAT))

    def _start(self):
        self._tasks.append(asyncio.create_task(self._read_upstream()))
        if self.heartbeat_interval and self.heartbeat_interval > 0:
            self._tasks.append(asyncio.create_task(self._heartbeat()))

    async def events(self) -> AsyncIterator[bytes]:
        """Yield chunks to the client until upstream closes or the client goes away."""

        self._start()
        try:
            while True:
                kind, payload = await self._queue.get()
                if kind == _CLOSE:
                    self.close_reason = str(payload)
                    break
                yield payload  # type: ignore[misc]
                if kind == _HEARTBEAT:
                    self.heartbeats_sent += 1
                else:
                    self.lines_forwarded += 1
        finally:
            if self.close_reason is None:
                self.close_reason = "cancelled"
                logger.info("Client disconnected, stopping stream")
            await self.aclose()

    async def aclose(self):
        if self._closed:
            return
        self._closed = True
        self.state = RelayState.CLOSED
        for task in self._tasks:
            task.cancel()
        # Runs inside a cancelled request scope when the client went away.
        with anyio.CancelScope(shield=True):
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            await self.upstream.aclose()
        logger.debug(
            "Stream closed (%s): %d line(s), %d heartbeat(s)",
            self.close_reason,
            self.lines_forwarded,
            self.heartbeats_sent,
        )


class RelayResponse(StreamingResponse):
    """Streaming response that releases the upstream stream however sending ends.

    A failed write to the client can surface as ``ClientDisconnect`` or a
    cancellation, in which case neither the body iterator nor a background
    task gets to close the relay.
    """

    def __init__(self, relay: StreamRelay):
        self.relay = relay
        super().__init__(
            relay.events(), status_code=relay.status_code, headers=STREAM_HEADERS
        )

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.body_iterator.aclose()
                await self.relay.aclose()
