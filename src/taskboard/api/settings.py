from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/taskboard.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: logging level name for the 'taskboard' loggers (default: INFO)
    - DEFAULT_PAGE_SIZE: page size used when a list request omits 'limit' (default: 10)
    - MAX_PAGE_SIZE: upper bound accepted for 'limit' (default: 100)
    - SEED_DEMO_DATA: 'true' to create the demo users and shared tags on startup
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    log_level: str
    default_page_size: int
    max_page_size: int
    seed_demo_data: bool


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str, default: int, minimum: int = 1) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        backend = "memory"

    sqlite_path = _get_env("SQLITE_DB_PATH", "./data/taskboard.db").strip()
    origins = _parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*"))

    log_level = _get_env("LOG_LEVEL", "INFO").strip().upper()
    max_page_size = _parse_int(_get_env("MAX_PAGE_SIZE", "100"), 100)
    default_page_size = min(_parse_int(_get_env("DEFAULT_PAGE_SIZE", "10"), 10), max_page_size)

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=sqlite_path,
        cors_allow_origins=origins,
        log_level=log_level,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        seed_demo_data=_parse_bool(_get_env("SEED_DEMO_DATA", "false"), False),
    )
