"""Runtime settings read from the environment (and .env via python-dotenv)."""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_QUEUE_MAX_SIZE = 1024
DEFAULT_SEND_TIMEOUT_SEC = 10.0


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (ValueError, TypeError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (ValueError, TypeError):
        return default


@dataclass(frozen=True)
class Settings:
    """Server configuration; build with Settings.from_env()."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    bearer_token: Optional[str] = None
    queue_max_size: int = DEFAULT_QUEUE_MAX_SIZE
    send_timeout_sec: float = DEFAULT_SEND_TIMEOUT_SEC

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.environ.get("HOST") or DEFAULT_HOST,
            port=_env_int("PORT", DEFAULT_PORT),
            bearer_token=(os.environ.get("BEARER_TOKEN") or "").strip() or None,
            queue_max_size=max(1, _env_int("SUBSCRIBER_QUEUE_MAX_SIZE", DEFAULT_QUEUE_MAX_SIZE)),
            send_timeout_sec=_env_float("SEND_TIMEOUT_SEC", DEFAULT_SEND_TIMEOUT_SEC),
        )
