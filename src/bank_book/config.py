"""
Settings for the bank-book service.

Values come from the process environment, with an optional .env file loaded
first (python-dotenv). Nothing here opens connections; the db and api layers
read a Settings instance when they need one.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import find_dotenv, load_dotenv

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./bank_book.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid integer for environment variable {name}: {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid number for environment variable {name}: {raw!r}")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Runtime configuration.

    Attributes:
        database_url: SQLAlchemy async URL (asyncpg for PostgreSQL,
            aiosqlite for local runs).
        db_echo: Echo SQL statements through the SQLAlchemy logger.
        log_level: Level name for the service logger.
        log_dir: Directory holding the rotating log file.
        jwt_secret: Shared secret used to verify caller tokens.
        jwt_algorithm: JWT signing algorithm.
        transfer_max_retries: Extra attempts after a concurrent-modification
            conflict before the posting gives up.
        transfer_timeout_seconds: Deadline for one atomic attempt.
        auto_create_tables: Run create_all on startup.
        cors_origins: Allowed CORS origins.
    """

    database_url: str = DEFAULT_DATABASE_URL
    db_echo: bool = False
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    transfer_max_retries: int = 3
    transfer_timeout_seconds: float = 10.0
    auto_create_tables: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (after loading .env)."""
        load_dotenv(find_dotenv(usecwd=True), override=False)
        return cls(
            database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
            db_echo=_env_bool("DB_ECHO", False),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            log_dir=Path(os.getenv("LOG_DIR") or "logs"),
            jwt_secret=os.getenv("JWT_SECRET") or "change-me",
            jwt_algorithm=os.getenv("JWT_ALGORITHM") or "HS256",
            transfer_max_retries=_env_int("TRANSFER_MAX_RETRIES", 3),
            transfer_timeout_seconds=_env_float("TRANSFER_TIMEOUT_SECONDS", 10.0),
            auto_create_tables=_env_bool("AUTO_CREATE_TABLES", True),
            cors_origins=_env_list("CORS_ORIGINS", ["*"]),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
