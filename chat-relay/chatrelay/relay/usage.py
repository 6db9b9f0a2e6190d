# chatrelay/relay/usage.py
from __future__ import annotations

from typing import Dict, Optional

from chatrelay.relay.chunks import UsageReport

PREFER_UPSTREAM = "prefer_upstream"
MAX = "max"
POLICIES = (PREFER_UPSTREAM, MAX)


class UsageAccumulator:
    """Token counters for a single stream.

    Content tokens are counted locally until the upstream reports its own
    completion count; from then on the upstream value is used and local
    counting stops. With the "max" policy local counting continues and the
    larger of the two is reported.
    """

    def __init__(self, policy: str = PREFER_UPSTREAM, prompt_tokens: Optional[int] = None) -> None:
        if policy not in POLICIES:
            raise ValueError(f"unknown usage policy: {policy}")
        self.policy = policy
        self.prompt_tokens = prompt_tokens
        self.upstream_reported = False
        self._local = 0
        self._upstream: Optional[int] = None
        self._final: Optional[Dict[str, int]] = None

    @property
    def completion_tokens(self) -> int:
        if self._upstream is None:
            return self._local
        if self.policy == MAX:
            return max(self._local, self._upstream)
        return self._upstream

    @property
    def finalized(self) -> bool:
        return self._final is not None

    def observe(self, report: Optional[UsageReport]) -> None:
        if self.finalized or report is None:
            return
        if report.prompt_tokens is not None:
            self.prompt_tokens = report.prompt_tokens
        if report.completion_tokens is not None:
            self.upstream_reported = True
            self._upstream = report.completion_tokens

    def count_token(self) -> None:
        if self.finalized:
            return
        if self.upstream_reported and self.policy == PREFER_UPSTREAM:
            return
        self._local += 1

    def snapshot(self) -> Dict[str, int]:
        return {
            "prompt_tokens": int(self.prompt_tokens or 0),
            "completion_tokens": self.completion_tokens,
        }

    def finalize(self) -> Dict[str, int]:
        if self._final is None:
            self._final = self.snapshot()
        return dict(self._final)
