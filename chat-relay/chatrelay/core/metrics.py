# chatrelay/core/metrics.py
from __future__ import annotations

from prometheus_client import Counter, Histogram

CHATS_SENT = Counter(
    "cr_chats_sent_total",
    "Chats sent to an LLM provider",
    ["endpoint", "multi_user_mode", "llm_provider", "multimodal"],
)
STREAMS_FINISHED = Counter(
    "cr_streams_finished_total",
    "Relayed streams by terminal state",
    ["state"],
)
TOKENS = Counter(
    "cr_tokens_total",
    "Tokens accounted by the relay",
    ["provider", "kind"],
)
STREAM_DURATION = Histogram(
    "cr_stream_duration_seconds",
    "Wall time from first upstream pull to terminal state",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)
