import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from services.events.core.recurrence import DEFAULT_MAX_INSTANCES

DEFAULT_DATABASE_URL = "sqlite:///./events.db"

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    sql_echo: bool = False
    max_instances: int = DEFAULT_MAX_INSTANCES


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Build Settings from the environment.

    A .env file (the given path, or one found from the working directory)
    is loaded first; variables already set in the environment win.
    """
    if env_file is not None:
        if env_file.exists():
            load_dotenv(env_file)
    else:
        load_dotenv()

    return Settings(
        database_url=os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
        log_level=(os.environ.get("EVENTS_LOG_LEVEL") or "INFO").upper(),
        sql_echo=_env_bool("EVENTS_SQL_ECHO", False),
        max_instances=_env_int("EVENTS_MAX_INSTANCES", DEFAULT_MAX_INSTANCES),
    )
