from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


@dataclass(slots=True)
class Settings:
    """Process configuration, read once from the environment."""

    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    upstream_url: str | None = None
    request_timeout: float = 10.0
    redis_url: str | None = None
    poll_interval: float = 5.0
    push_retry_interval: float = 60.0
    seed_path: Path | None = None
    log_level: str = "INFO"
    log_dir: Path | None = None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _path_env(name: str) -> Path | None:
    raw = os.getenv(name)
    if not raw:
        return None
    return Path(raw).expanduser().resolve()


def load_settings() -> Settings:
    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]

    return Settings(
        cors_origins=origins or list(DEFAULT_CORS_ORIGINS),
        upstream_url=(os.getenv("QUEUEFLOW_UPSTREAM_URL") or "").strip() or None,
        request_timeout=_float_env("QUEUEFLOW_REQUEST_TIMEOUT", 10.0),
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        poll_interval=_float_env("QUEUEFLOW_POLL_INTERVAL", 5.0),
        push_retry_interval=_float_env("QUEUEFLOW_PUSH_RETRY_INTERVAL", 60.0),
        seed_path=_path_env("QUEUEFLOW_SEED_PATH"),
        log_level=(os.getenv("QUEUEFLOW_LOG_LEVEL") or "INFO").upper(),
        log_dir=_path_env("QUEUEFLOW_LOG_DIR"),
    )
