# chatrelay/utils/text.py
from __future__ import annotations

import re
import uuid

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _NON_SLUG.sub("-", (name or "").lower()).strip("-")
    return slug or uuid.uuid4().hex[:8]


def truncate(text: str, length: int, ellipsis: str = "...") -> str:
    """Cut `text` to `length` characters, marking the cut with `ellipsis`."""
    text = (text or "").strip()
    if len(text) <= length:
        return text
    return text[:length] + ellipsis
