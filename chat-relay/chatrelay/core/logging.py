# chatrelay/core/logging.py
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import Request, Response

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base: Dict[str, Any] = {
            "level": record.levelname,
            "time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "logger": record.name,
        }
        msg = record.msg
        if isinstance(msg, dict):
            payload = {**base, **msg}
        else:
            payload = {**base, "message": record.getMessage()}
        payload.update(_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.created))
        lvl = record.levelname.ljust(5)
        base = f"{ts} | {lvl} | {record.name}:"
        msg = record.msg
        fields = dict(msg) if isinstance(msg, dict) else {}
        fields.update(_extras(record))
        parts = []
        for k, v in fields.items():
            if isinstance(v, (dict, list)):
                v_str = json.dumps(v, ensure_ascii=False, default=str)
            else:
                v_str = str(v)
            if " " in v_str or ";" in v_str:
                v_str = f'"{v_str}"'
            parts.append(f"{k}={v_str}")
        text = " ".join(parts) if isinstance(msg, dict) else " ".join([record.getMessage(), *parts])
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return f"{base} {text}".rstrip()


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler()
    fmt = (fmt or os.getenv("LOG_FORMAT", "json")).lower()
    if fmt in ("plain", "text", "human"):
        handler.setFormatter(PlainFormatter())
    else:
        handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)


async def request_logging_middleware(request: Request, call_next):
    start = time.perf_counter()
    response: Optional[Response] = None
    try:
        response = await call_next(request)
        return response
    finally:
        if request.url.path != "/metrics":
            duration_ms = (time.perf_counter() - start) * 1000
            status = response.status_code if response is not None else 500
            logging.getLogger("app.request").info(
                {
                    "method": request.method,
                    "path": request.url.path,
                    "status": status,
                    "duration_ms": round(duration_ms, 2),
                    "trace_id": request.headers.get("x-trace-id"),
                }
            )
