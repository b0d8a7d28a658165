"""Connection handle for WebSocket subscribers: bounded outbound queue drained by an asyncio task."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from relay.config import DEFAULT_QUEUE_MAX_SIZE, DEFAULT_SEND_TIMEOUT_SEC
from relay.errors import DeliveryError
from relay.message import Envelope
from relay.observability import Metrics
from relay.subscriber import SubscriberHandle

# Wakes drain_loop when the handle closes
_DRAIN_SENTINEL = object()

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]


class ConnectionHandle(SubscriberHandle):
    """
    Handle over one WebSocket connection.

    deliver() may be called from any thread: the envelope is handed to the
    connection's event loop and appended to a bounded queue. When the queue is
    full the oldest envelope is dropped, so a slow consumer loses messages
    instead of stalling the publisher. drain_loop() writes queued envelopes
    with a per-write timeout; a failed or timed-out write closes the handle.
    """

    def __init__(
        self,
        send: SendFn,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        queue_max_size: int = DEFAULT_QUEUE_MAX_SIZE,
        send_timeout_sec: float = DEFAULT_SEND_TIMEOUT_SEC,
        metrics: Optional[Metrics] = None,
        handle_id: Optional[str] = None,
    ) -> None:
        super().__init__(handle_id)
        self._send = send
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_max_size))
        self._send_timeout_sec = send_timeout_sec
        self._metrics = metrics
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        """Envelopes queued but not yet written."""
        return self._queue.qsize()

    def _write(self, envelope: Envelope) -> None:
        try:
            self._loop.call_soon_threadsafe(self._enqueue, envelope)
        except RuntimeError as e:
            # loop already closed: the connection is gone
            raise DeliveryError(self.handle_id, str(e)) from e

    def _enqueue(self, envelope: Envelope) -> None:
        """Runs on the connection's loop. Drop oldest on overflow."""
        if self.closed:
            return
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self._logger.warning(
                "queue_full_dropped_oldest",
                extra={
                    "channel": getattr(dropped, "channel", None),
                    "handle_id": self.handle_id,
                },
            )
            if self._metrics is not None:
                self._metrics.increment("envelopes_dropped_queue_full")
        self._queue.put_nowait(envelope)

    async def drain_loop(self) -> None:
        """Write queued envelopes to the connection until the handle closes."""
        while not self.closed:
            item = await self._queue.get()
            if item is _DRAIN_SENTINEL:
                break
            try:
                await asyncio.wait_for(self._send(item.to_dict()), timeout=self._send_timeout_sec)
            except asyncio.TimeoutError:
                self._logger.warning(
                    "send_timeout",
                    extra={"handle_id": self.handle_id, "timeout_sec": self._send_timeout_sec},
                )
                self.close()
            except Exception as e:
                self._logger.warning(
                    "send_failed",
                    extra={"handle_id": self.handle_id, "error": str(e)},
                )
                self.close()

    def start_drain(self) -> asyncio.Task:
        """Start the drain task on the connection's loop (idempotent). Call from that loop."""
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = self._loop.create_task(self.drain_loop())
        return self._drain_task

    async def stop_drain(self) -> None:
        """Close the handle and wait for the drain task to finish."""
        self.close()
        task, self._drain_task = self._drain_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _release(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._wake_drain)
        except RuntimeError:
            # loop closed; nothing left to wake
            return

    def _wake_drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_DRAIN_SENTINEL)
