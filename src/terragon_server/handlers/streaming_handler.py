"""
Progress Streaming Handler

A single-writer SSE channel for long-running sandbox operations. The
operation body pushes progress events while the HTTP layer drains the
channel as ``data: {json}`` frames.

Key responsibilities:
- Order progress events through one queue
- Emit exactly one terminal event (complete or error), then close
- Drop writes after close instead of raising
- Shut down the operation's sandbox exactly once on any exit path,
  including client disconnect
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from terragon_sandbox.core.types import SandboxSession

logger = logging.getLogger(__name__)

# Dedicated logger for SSE events (can be configured independently)
sse_logger = logging.getLogger("sse_events")

DEFAULT_MAX_QUEUE_SIZE = 1000
KEEPALIVE_FRAME = ": keepalive\n\n"

_CLOSE = object()


class StreamAborted(Exception):
    """Raised inside the operation body once the client has gone away."""


def format_sse_frame(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


async def _default_shutdown(session: SandboxSession) -> None:
    await session.shutdown()


class ProgressStream:
    """
    Progress channel owned by one streamed operation.

    State machine: open, any number of progress events, one terminal event,
    closed. Every send after close is a silent no-op, so completion racing
    a client disconnect is harmless.
    """

    def __init__(
        self,
        operation: str = "operation",
        shutdown: Callable[[SandboxSession], Awaitable[None]] = _default_shutdown,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
    ):
        self.operation = operation
        self._shutdown = shutdown
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False
        self._aborted = False
        self._active_sandbox: Optional[SandboxSession] = None
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def active_sandbox(self) -> Optional[SandboxSession]:
        return self._active_sandbox

    def _write(self, event: Dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # Reader stopped draining; treat it as a disconnected client
            self._closed = True
            logger.error(
                f"[{self.operation}] Stream queue full, closing channel "
                f"(client may have disconnected)"
            )

    def _close_channel(self) -> None:
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            pass

    async def send_progress(self, step: str, message: str) -> None:
        """Queue a progress event; never raises."""
        self._write({
            "type": "progress",
            "output": {
                "step": step,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        })

    async def send_complete(self, data: Optional[Dict[str, Any]] = None) -> None:
        if self._closed:
            return
        self._write({"type": "complete", "data": data})
        self._close_channel()

    async def send_error(self, error: str) -> None:
        if self._closed:
            return
        self._write({"type": "error", "error": error})
        self._close_channel()

    # ------------------------------------------------------------------
    # Sandbox ownership
    # ------------------------------------------------------------------

    def track_sandbox(self, session: SandboxSession) -> None:
        """Record the sandbox this operation owns.

        If the client already disconnected, cleanup starts immediately.
        """
        self._active_sandbox = session
        if self._aborted:
            self._schedule_cleanup()

    async def release_sandbox(self) -> None:
        """Shut down the tracked sandbox once; failures are logged."""
        session = self._active_sandbox
        if session is None:
            return
        self._active_sandbox = None
        try:
            await self._shutdown(session)
        except Exception as e:
            logger.error(
                f"[{self.operation}] Error shutting down sandbox {session.sandbox_id}: {e}"
            )

    def _schedule_cleanup(self) -> None:
        if self._active_sandbox is None:
            return
        self._cleanup_task = asyncio.ensure_future(self.release_sandbox())

    async def wait_for_cleanup(self) -> None:
        """Wait for a disconnect-triggered shutdown to finish."""
        if self._cleanup_task is not None:
            await self._cleanup_task

    def abort(self) -> None:
        """
        Handle client disconnect.

        Closes the channel and starts sandbox shutdown without waiting for
        whatever remote call is in flight.
        """
        if self._aborted:
            return
        self._aborted = True
        self._closed = True
        logger.info(f"[{self.operation}] Client disconnected, aborting")
        self._schedule_cleanup()

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise StreamAborted(f"{self.operation} aborted by client")

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def iter_frames(
        self,
        keepalive_interval: float = 15.0,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames until the terminal event has been sent.

        A keepalive comment is emitted after ``keepalive_interval`` seconds
        of silence. If the consumer stops early (the response was cancelled)
        or ``is_disconnected`` reports a gone client, the stream is aborted.
        """
        finished = False
        try:
            while True:
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=keepalive_interval)
                except asyncio.TimeoutError:
                    if is_disconnected is not None and await is_disconnected():
                        break
                    # Closed without a close marker means the queue overflowed
                    if self._aborted or self._closed:
                        break
                    yield KEEPALIVE_FRAME
                    continue

                if event is _CLOSE:
                    finished = True
                    break

                frame = format_sse_frame(event)
                sse_logger.debug(f"[{self.operation}] {frame.strip()}")
                yield frame
        finally:
            if not finished:
                self.abort()
