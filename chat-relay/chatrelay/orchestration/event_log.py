# chatrelay/orchestration/event_log.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from chatrelay.storage import repo

diag = logging.getLogger("app.eventlog")


class EventLogger:
    """Best-effort event log: one row in `event_logs` plus one JSON line in a file.

    Each record is serialized up front and appended with a single write, so
    concurrent streams never interleave partial records. Failures are reported
    on the diagnostic logger and never reach the caller.
    """

    def __init__(self, log_path: Optional[str] = None, *, persist: bool = True) -> None:
        self.log_path = Path(log_path) if log_path else None
        self.persist = persist

    async def log_event(self, name: str, details: Dict[str, Any], actor_id: Optional[int] = None) -> None:
        if self.persist:
            try:
                repo.insert_event_log(name, details, actor_id)
            except Exception:  # noqa: BLE001
                diag.warning("event_logs insert failed: %s", name, exc_info=True)
        if self.log_path is not None:
            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event": name,
                "details": details,
                "user_id": actor_id,
            }
            try:
                self._append(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
            except Exception:  # noqa: BLE001
                diag.warning("event log file write failed: %s", self.log_path, exc_info=True)

    def _append(self, line: str) -> None:
        assert self.log_path is not None
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(line)
