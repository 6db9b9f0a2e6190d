# chatrelay/history/records.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class ChatRecord:
    """One persisted prompt/response pair, as read from storage.

    `response` is the serialized JSON the relay stored for the assistant side
    ({"text", "sources", "type", "attachments", "metrics"}).
    """

    id: Any
    prompt: Any
    response: Any
    created_at: Optional[datetime] = None
    feedback_score: Optional[float] = None

    @classmethod
    def from_row(cls, row: Any) -> "ChatRecord":
        return cls(
            id=row.id,
            prompt=row.prompt,
            response=row.response,
            created_at=row.created_at,
            feedback_score=row.feedback_score,
        )
