# chatrelay/relay/writer.py
from __future__ import annotations

import json

from chatrelay.relay.events import StreamEvent
from chatrelay.relay.transport import Transport


def format_frame(event: StreamEvent) -> bytes:
    return f"data: {json.dumps(event.to_wire(), ensure_ascii=False)}\n\n".encode("utf-8")


async def write_response_chunk(transport: Transport, event: StreamEvent) -> None:
    """Send one event as one frame. Transport failures propagate to the caller."""
    await transport.write(format_frame(event))
