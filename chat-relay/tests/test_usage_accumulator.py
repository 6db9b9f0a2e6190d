# tests/test_usage_accumulator.py
from __future__ import annotations

import pytest

from chatrelay.relay.chunks import StreamChunk, UsageReport
from chatrelay.relay.usage import MAX, PREFER_UPSTREAM, UsageAccumulator


def test_counts_content_chunks_without_upstream_usage() -> None:
    acc = UsageAccumulator(prompt_tokens=12)
    for _ in range(3):
        acc.count_token()
    assert acc.finalize() == {"prompt_tokens": 12, "completion_tokens": 3}


def test_prefer_upstream_stops_local_counting() -> None:
    acc = UsageAccumulator(PREFER_UPSTREAM)
    acc.count_token()
    acc.count_token()
    acc.observe(UsageReport(prompt_tokens=7, completion_tokens=10))
    acc.count_token()
    acc.count_token()
    assert acc.completion_tokens == 10
    assert acc.finalize() == {"prompt_tokens": 7, "completion_tokens": 10}


def test_max_policy_keeps_counting_and_reports_larger() -> None:
    acc = UsageAccumulator(MAX)
    acc.observe(UsageReport(completion_tokens=1))
    for _ in range(4):
        acc.count_token()
    assert acc.completion_tokens == 4

    acc2 = UsageAccumulator(MAX)
    acc2.count_token()
    acc2.observe(UsageReport(completion_tokens=9))
    assert acc2.completion_tokens == 9


def test_finalize_is_idempotent_and_freezes_counts() -> None:
    acc = UsageAccumulator()
    acc.count_token()
    first = acc.finalize()
    acc.count_token()
    acc.observe(UsageReport(completion_tokens=50))
    assert acc.finalize() == first
    assert acc.finalized


def test_unknown_policy_rejected() -> None:
    with pytest.raises(ValueError):
        UsageAccumulator("average")


def test_usage_report_accepts_both_namings() -> None:
    assert UsageReport.from_payload({"input_tokens": 3, "output_tokens": 4}) == UsageReport(3, 4)
    assert UsageReport.from_payload({"prompt_tokens": 3, "completion_tokens": 4}) == UsageReport(3, 4)
    assert UsageReport.from_payload({}) is None
    assert UsageReport.from_payload(None) is None


def test_chunk_normalization() -> None:
    chunk = StreamChunk.from_payload({"choices": [{"delta": {"content": "a"}, "finish_reason": ""}]})
    assert chunk.content == "a"
    assert chunk.finish_reason is None
    assert not chunk.is_terminal

    legacy = StreamChunk.from_payload({"choices": [{"text": "b", "finish_reason": "length"}]})
    assert legacy.content == "b"
    assert legacy.is_terminal

    usage_only = StreamChunk.from_payload({"choices": [], "usage": {"prompt_tokens": 1, "completion_tokens": 2}})
    assert usage_only.content is None
    assert usage_only.usage == UsageReport(1, 2)
