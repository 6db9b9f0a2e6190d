# chatrelay/utils/tokens.py
from __future__ import annotations

import math
from typing import Any, Dict, Iterable


def approx_tokens(text: str) -> int:
    """Rough token estimate: 1 token ~= 4 chars."""
    return int(math.ceil(len(text or "") / 4))


def approx_tokens_messages(messages: Iterable[Dict[str, Any]]) -> int:
    """Estimate for a chat prompt; adds a small per-message overhead for role framing."""
    total = 0
    for m in messages:
        content = m.get("content") or ""
        if not isinstance(content, str):
            # multimodal parts: count the text ones only
            content = " ".join(p["text"] for p in content if isinstance(p, dict) and isinstance(p.get("text"), str))
        total += approx_tokens(content) + 4
    return total
