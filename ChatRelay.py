from __future__ import annotations

import os
import sys
from pathlib import Path

import uvicorn


def _prepare_paths() -> Path:
    base_dir = Path(__file__).resolve().parent
    app_dir = base_dir / "chat-relay"
    # Ensure project package path is importable
    if str(app_dir) not in sys.path:
        sys.path.insert(0, str(app_dir))
    # Relative paths (data/, logs/) resolve against the app directory
    os.chdir(app_dir)
    return app_dir


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def main() -> None:
    _prepare_paths()

    os.environ.setdefault("DB_URL", "sqlite:///data/app.db")
    os.environ.setdefault("EVENT_LOG_PATH", "logs/chat.log")

    host = _env("APP_HOST", "127.0.0.1")
    port_str = _env("APP_PORT", "8000")
    try:
        port = int(port_str)
    except ValueError:
        port = 8000

    # Import after sys.path/cwd are prepared
    from apps.api.main import app  # noqa: WPS433

    uvicorn.run(app, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
