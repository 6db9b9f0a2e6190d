# chatrelay/relay/events.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EventType = Literal["textResponseChunk", "abort", "action"]


class StreamEvent(BaseModel):
    """Wire unit of the event stream. `close=True` marks the terminal event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: EventType = "textResponseChunk"
    text_response: Optional[str] = None
    sources: List[Dict[str, Any]] = Field(default_factory=list)
    close: bool = False
    error: Union[bool, str] = False

    # only set on action events
    action: Optional[str] = None
    thread: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        if self.type != "action":
            data.pop("action", None)
            data.pop("thread", None)
        return data


def text_chunk(event_id: str, token: str) -> StreamEvent:
    return StreamEvent(id=event_id, text_response=token)


def terminal_chunk(event_id: str, sources: List[Dict[str, Any]]) -> StreamEvent:
    return StreamEvent(id=event_id, text_response="", sources=list(sources), close=True)


def abort_event(message: str, event_id: Optional[str] = None) -> StreamEvent:
    return StreamEvent(
        id=event_id or str(uuid4()),
        type="abort",
        text_response=None,
        close=True,
        error=message,
    )


def rename_thread_event(slug: str, name: str) -> StreamEvent:
    return StreamEvent(type="action", action="rename_thread", thread={"slug": slug, "name": name})
