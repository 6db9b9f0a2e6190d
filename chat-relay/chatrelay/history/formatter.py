# chatrelay/history/formatter.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from chatrelay.history.records import ChatRecord


def _unix(ts: Optional[datetime]) -> int:
    if ts is None:
        return 0
    if ts.tzinfo is None:
        # stored as naive UTC
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp())


def _parse(record: ChatRecord) -> Optional[Tuple[str, Dict[str, Any]]]:
    """(prompt, response data) for a usable record, None for a malformed one."""
    if not isinstance(record.prompt, str):
        return None
    try:
        data = json.loads(record.response)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("text"), str):
        return None
    return record.prompt, data


def to_display_history(records: Iterable[ChatRecord]) -> List[Dict[str, Any]]:
    """Records -> alternating user/assistant messages for rendering a chat log."""
    out: List[Dict[str, Any]] = []
    for record in records:
        parsed = _parse(record)
        if parsed is None:
            continue
        prompt, data = parsed
        sent_at = _unix(record.created_at)
        out.append(
            {
                "role": "user",
                "content": prompt,
                "sentAt": sent_at,
                "attachments": data.get("attachments") or [],
                "chatId": record.id,
            }
        )
        out.append(
            {
                "type": data.get("type") or "chart",
                "role": "assistant",
                "content": data["text"],
                "sources": data.get("sources") or [],
                "chatId": record.id,
                "sentAt": sent_at,
                "feedbackScore": record.feedback_score,
                "metrics": data.get("metrics") or {},
            }
        )
    return out


def to_prompt_history(records: Iterable[ChatRecord]) -> List[Dict[str, str]]:
    """Records -> bare {role, content} pairs for a provider prompt."""
    out: List[Dict[str, str]] = []
    for record in records:
        parsed = _parse(record)
        if parsed is None:
            continue
        prompt, data = parsed
        out.append({"role": "user", "content": prompt})
        out.append({"role": "assistant", "content": data["text"]})
    return out
