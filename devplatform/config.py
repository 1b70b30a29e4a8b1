"""Environment-based configuration for the developer platform API.

Values are read from a local ``.env`` file (if any) and the process
environment, then merged into ``app.config`` by :func:`devplatform.app.create_app`.
"""


from __future__ import annotations

import os
from typing import Any, Dict

from dotenv import load_dotenv


DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:5173"


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Dict[str, Any]:
    """Build the application settings from the environment.

    Returns:
        dict: Upper-case settings suitable for ``app.config.update``.
    """
    load_dotenv()

    return {
        "DATABASE_URL": os.getenv("DATABASE_URL"),
        "BACKEND_PORT": int(os.getenv("BACKEND_PORT", "8000")),
        "DEBUG": _as_bool(os.getenv("DEBUG", "false")),
        "CORS_ORIGINS": [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
            if origin.strip()
        ],
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
        "LOG_FORMAT": os.getenv("LOG_FORMAT", "text").lower(),
        "SSE_HEARTBEAT_SECONDS": float(os.getenv("SSE_HEARTBEAT_SECONDS", "30")),
        "HISTORY_RETENTION_DAYS": int(os.getenv("HISTORY_RETENTION_DAYS", "90")),
    }
