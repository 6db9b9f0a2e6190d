# chatrelay/relay/monitor.py
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from chatrelay.core.metrics import STREAM_DURATION, TOKENS


class StreamMeasurement:
    """Times one upstream call and turns its final usage into metrics.

    `end()` records to prometheus once; later calls return the same metrics.
    """

    def __init__(self, provider: str, model: str) -> None:
        self.provider = provider
        self.model = model
        self.started = time.perf_counter()
        self.metrics: Optional[Dict[str, Any]] = None

    def end(self, usage: Dict[str, int]) -> Dict[str, Any]:
        if self.metrics is not None:
            return self.metrics
        duration = time.perf_counter() - self.started
        prompt = int(usage.get("prompt_tokens", 0) or 0)
        completion = int(usage.get("completion_tokens", 0) or 0)
        self.metrics = {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": prompt + completion,
            "outputTps": round(completion / duration, 3) if duration > 0 else 0.0,
            "duration": round(duration, 3),
            "model": self.model,
        }
        TOKENS.labels(provider=self.provider, kind="prompt").inc(prompt)
        TOKENS.labels(provider=self.provider, kind="completion").inc(completion)
        STREAM_DURATION.labels(provider=self.provider).observe(duration)
        return self.metrics
