# chatrelay/relay/chunks.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class UsageReport:
    """Token counts as reported by the upstream. Either field may be missing."""

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["UsageReport"]:
        """Accepts both prompt/completion and input/output naming.

        Returns None for absent or empty payloads so callers can tell
        "no usage on this chunk" apart from "usage with zero tokens".
        """
        if not isinstance(payload, dict) or not payload:
            return None
        prompt = payload.get("prompt_tokens", payload.get("input_tokens"))
        completion = payload.get(
            "completion_tokens", payload.get("output_tokens", payload.get("generated_tokens"))
        )
        report = cls(prompt_tokens=_as_int(prompt), completion_tokens=_as_int(completion))
        if report.prompt_tokens is None and report.completion_tokens is None:
            return None
        return report


@dataclass(frozen=True)
class StreamChunk:
    """One item of an upstream token stream, normalized.

    A chunk may carry any combination of a content delta, a usage report and a
    finish reason. Only a non-empty finish reason ends the stream.
    """

    content: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[UsageReport] = None

    @property
    def is_terminal(self) -> bool:
        return bool(self.finish_reason)

    @classmethod
    def from_payload(cls, obj: Dict[str, Any]) -> "StreamChunk":
        choices = obj.get("choices") or []
        choice = (choices[0] or {}) if choices else {}
        delta = choice.get("delta") or {}
        content = delta.get("content")
        if not content:
            # text completions and a few local servers use other keys
            content = choice.get("text") or choice.get("token") or choice.get("text_delta")
        finish = choice.get("finish_reason")
        return cls(
            content=content if isinstance(content, str) and content else None,
            finish_reason=finish if isinstance(finish, str) and finish else None,
            usage=UsageReport.from_payload(obj.get("usage")),
        )
