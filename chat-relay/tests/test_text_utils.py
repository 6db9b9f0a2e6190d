# tests/test_text_utils.py
from __future__ import annotations

from chatrelay.utils.text import slugify, truncate
from chatrelay.utils.tokens import approx_tokens, approx_tokens_messages


def test_truncate_marks_cut() -> None:
    assert truncate("short", 22) == "short"
    assert truncate("  padded  ", 22) == "padded"
    assert truncate("abcdefghij", 4) == "abcd..."


def test_slugify() -> None:
    assert slugify("Team Docs!") == "team-docs"
    assert len(slugify("!!!")) == 8


def test_token_estimates() -> None:
    assert approx_tokens("") == 0
    assert approx_tokens("abcde") == 2
    msgs = [
        {"role": "system", "content": "abcd"},
        {"role": "user", "content": [{"type": "text", "text": "abcdefgh"}, {"type": "image_url", "image_url": {}}]},
    ]
    assert approx_tokens_messages(msgs) == (1 + 4) + (2 + 4)
