# tests/conftest.py
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

# Must happen before anything imports chatrelay.core.settings / storage.database
_TMP = Path(tempfile.mkdtemp(prefix="chatrelay-tests-"))
os.environ["DB_URL"] = f"sqlite:///{(_TMP / 'app.db').as_posix()}"
os.environ["EVENT_LOG_PATH"] = str(_TMP / "logs" / "chat.log")
os.environ["LLM_BASE_URL"] = "http://llm.test"
os.environ["LLM_PROVIDER"] = "openai"
os.environ["DEFAULT_CHAT_MODEL"] = "test-model"
os.environ["MULTI_USER_MODE"] = "false"
os.environ["API_KEYS"] = ""

import pytest  # noqa: E402

from chatrelay.core.errors import TransportClosedError  # noqa: E402


class RecordingTransport:
    """In-memory transport: writes land in `frames` immediately.

    `disconnect_after=N` simulates the client going away right after the Nth
    frame was delivered.
    """

    def __init__(self, disconnect_after: Optional[int] = None) -> None:
        self.frames: List[bytes] = []
        self.closed = False
        self.close_calls = 0
        self.disconnect_after = disconnect_after
        self._listeners: list = []

    async def write(self, frame: bytes) -> None:
        if self.closed:
            raise TransportClosedError("closed")
        self.frames.append(frame)
        if self.disconnect_after is not None and len(self.frames) >= self.disconnect_after:
            self.disconnect()

    def on_close(self, listener) -> None:
        self._listeners.append(listener)

    def remove_close_listener(self, listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def disconnect(self) -> None:
        self.closed = True
        listeners, self._listeners = self._listeners, []
        for fn in listeners:
            fn()

    def close(self) -> None:
        self.close_calls += 1
        if not self.closed:
            self.disconnect()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def events(self) -> List[Dict[str, Any]]:
        return parse_frames(b"".join(self.frames))


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def log_event(self, name: str, details: Dict[str, Any], actor_id: Optional[int] = None) -> None:
        self.events.append((name, details, actor_id))

    def names(self) -> List[str]:
        return [e[0] for e in self.events]


def parse_frames(raw: bytes) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for block in raw.decode("utf-8").split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            out.append(json.loads(block[len("data: "):]))
    return out


def sse_body(*payloads: Any, done: bool = True) -> str:
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


def delta(content: Optional[str] = None, finish_reason: Optional[str] = None, usage: Optional[dict] = None) -> dict:
    payload: Dict[str, Any] = {"choices": [{"delta": {"content": content} if content is not None else {}, "finish_reason": finish_reason}]}
    if usage is not None:
        payload["usage"] = usage
    return payload


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def event_logger() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def tmp_root() -> Path:
    return _TMP
