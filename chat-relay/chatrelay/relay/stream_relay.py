# chatrelay/relay/stream_relay.py
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol
from uuid import uuid4

from chatrelay.core.errors import TransportClosedError
from chatrelay.core.metrics import STREAMS_FINISHED
from chatrelay.relay.chunks import StreamChunk
from chatrelay.relay.events import abort_event, terminal_chunk, text_chunk
from chatrelay.relay.monitor import StreamMeasurement
from chatrelay.relay.transport import Transport
from chatrelay.relay.usage import PREFER_UPSTREAM, UsageAccumulator
from chatrelay.relay.writer import write_response_chunk

log = logging.getLogger("app.relay")


class EventSink(Protocol):
    async def log_event(self, name: str, details: Dict[str, Any], actor_id: Optional[int] = None) -> None: ...


class RelayState(str, enum.Enum):
    STARTED = "started"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_STATES = (RelayState.COMPLETED, RelayState.ABORTED, RelayState.ERRORED)

_DISCONNECTED = object()


class StreamRelay:
    """Drains one upstream chunk iterator into wire events.

    One instance per request. `run()` always returns the text accumulated so
    far, whatever way the stream ends, and writes at most one terminal event.
    Usage is finalized exactly once and handed to the measurement.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        measurement: Optional[StreamMeasurement] = None,
        event_sink: Optional[EventSink] = None,
        usage_policy: str = PREFER_UPSTREAM,
        prompt_tokens: Optional[int] = None,
    ) -> None:
        self.transport = transport
        self.measurement = measurement
        self.event_sink = event_sink
        self.usage = UsageAccumulator(usage_policy, prompt_tokens=prompt_tokens)
        self.state = RelayState.STARTED
        self.full_text = ""
        self.error: Optional[str] = None
        self.metrics: Dict[str, Any] = {}
        self.stream_id = ""
        self._disconnected = asyncio.Event()

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _on_close(self) -> None:
        if not self.done:
            self._disconnected.set()

    async def run(
        self,
        stream: AsyncIterator[StreamChunk],
        *,
        stream_id: Optional[str] = None,
        sources: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        self.stream_id = stream_id or str(uuid4())
        sources = list(sources or [])
        await self._log("StreamStart", {"uuid": self.stream_id, "sources": sources})

        self.transport.on_close(self._on_close)
        if self.transport.closed:
            self._disconnected.set()
        self.state = RelayState.STREAMING
        iterator = stream.__aiter__()
        try:
            while not self.done:
                item = await self._pull(iterator)
                if item is _DISCONNECTED:
                    self._finish(RelayState.ABORTED)
                    break
                if item is None:
                    # upstream ran dry without a finish reason
                    await self._complete(sources)
                    break
                await self._handle(item, sources)
        except TransportClosedError:
            self._finish(RelayState.ABORTED)
        except Exception as exc:  # noqa: BLE001
            await self._fail(exc)
        finally:
            await self._release(iterator)

        if self.state == RelayState.ABORTED:
            log.info("stream aborted by client", extra={"stream_id": self.stream_id})
            await self._log("StreamAborted", {"uuid": self.stream_id, "fullText": self.full_text})
        await self._log(
            "StreamEnd",
            {"uuid": self.stream_id, "state": self.state.value, "fullText": self.full_text, "usage": self.usage.finalize()},
        )
        return self.full_text

    async def _pull(self, iterator: AsyncIterator[StreamChunk]) -> Any:
        """Next chunk, None when exhausted, or _DISCONNECTED if the client left first."""
        if self._disconnected.is_set():
            return _DISCONNECTED

        async def _next() -> Optional[StreamChunk]:
            try:
                return await iterator.__anext__()
            except StopAsyncIteration:
                return None

        next_task = asyncio.ensure_future(_next())
        gone_task = asyncio.ensure_future(self._disconnected.wait())
        try:
            done, _ = await asyncio.wait({next_task, gone_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            next_task.cancel()
            gone_task.cancel()
            raise
        if gone_task in done:
            next_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await next_task
            return _DISCONNECTED
        gone_task.cancel()
        return next_task.result()

    async def _handle(self, chunk: StreamChunk, sources: List[Dict[str, Any]]) -> None:
        self.usage.observe(chunk.usage)
        if chunk.content:
            self.full_text += chunk.content
            self.usage.count_token()
            await write_response_chunk(self.transport, text_chunk(self.stream_id, chunk.content))
        if chunk.is_terminal:
            await self._complete(sources)

    async def _complete(self, sources: List[Dict[str, Any]]) -> None:
        await write_response_chunk(self.transport, terminal_chunk(self.stream_id, sources))
        self._finish(RelayState.COMPLETED)

    async def _fail(self, exc: Exception) -> None:
        self.error = str(exc) or exc.__class__.__name__
        log.warning("upstream stream failed: %s", self.error, extra={"stream_id": self.stream_id})
        if not self.transport.closed:
            with contextlib.suppress(TransportClosedError):
                await write_response_chunk(self.transport, abort_event(self.error, self.stream_id))
        self._finish(RelayState.ERRORED)

    def _finish(self, state: RelayState) -> None:
        if self.done:
            return
        self.state = state
        self.transport.remove_close_listener(self._on_close)
        usage = self.usage.finalize()
        if self.measurement is not None:
            self.metrics = self.measurement.end(usage)
        else:
            self.metrics = dict(usage)
        STREAMS_FINISHED.labels(state=state.value).inc()

    async def _release(self, iterator: AsyncIterator[StreamChunk]) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:  # noqa: BLE001
            log.debug("upstream iterator close failed", exc_info=True)

    async def _log(self, name: str, details: Dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        try:
            await self.event_sink.log_event(name, details)
        except Exception:  # noqa: BLE001
            log.warning("event log write failed: %s", name, exc_info=True)
