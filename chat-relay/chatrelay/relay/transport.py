# chatrelay/relay/transport.py
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional, Protocol, Tuple

from chatrelay.core.errors import TransportClosedError

log = logging.getLogger("app.relay")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Content-Type": "text/event-stream",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "X-Accel-Buffering": "no",
}

CloseListener = Callable[[], None]


class Transport(Protocol):
    closed: bool

    async def write(self, frame: bytes) -> None: ...

    def on_close(self, listener: CloseListener) -> None: ...

    def remove_close_listener(self, listener: CloseListener) -> None: ...

    def close(self) -> None: ...


class SSETransport:
    """Unbuffered hand-off from a producer task to a streaming response body.

    `write()` returns only after the frame was yielded to the server by
    `frames()`. When the consumer goes away (client disconnect) every pending
    and later write raises TransportClosedError. Close listeners fire once,
    for a server-side `close()` as well as for a disconnect.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Tuple[Optional[bytes], Optional[asyncio.Future]]] = asyncio.Queue()
        self._listeners: List[CloseListener] = []
        self._pending: List[asyncio.Future] = []
        self.closed = False
        self.disconnected = False

    def on_close(self, listener: CloseListener) -> None:
        self._listeners.append(listener)

    def remove_close_listener(self, listener: CloseListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def write(self, frame: bytes) -> None:
        if self.closed:
            raise TransportClosedError("stream is closed")
        delivered = asyncio.get_running_loop().create_future()
        self._pending.append(delivered)
        await self._queue.put((frame, delivered))
        try:
            await delivered
        finally:
            if delivered in self._pending:
                self._pending.remove(delivered)

    def close(self) -> None:
        """Server-side end of stream; frames already queued are still sent."""
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait((None, None))
        self._fire()

    def disconnect(self) -> None:
        """Consumer is gone. Fails in-flight writes and notifies listeners."""
        if self.disconnected:
            return
        self.disconnected = True
        was_closed = self.closed
        self.closed = True
        for fut in list(self._pending):
            if not fut.done():
                fut.set_exception(TransportClosedError("client disconnected"))
        self._pending.clear()
        if not was_closed:
            log.info("stream client disconnected")
            self._fire()

    def _fire(self) -> None:
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception:  # noqa: BLE001
                log.warning("close listener failed", exc_info=True)

    async def frames(self) -> AsyncIterator[bytes]:
        """Body iterator for StreamingResponse."""
        try:
            while True:
                frame, delivered = await self._queue.get()
                if frame is None:
                    break
                yield frame
                if delivered is not None and not delivered.done():
                    delivered.set_result(None)
        finally:
            self.disconnect()
