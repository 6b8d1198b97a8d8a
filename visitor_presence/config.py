"""
Configuration
=============

All settings come from environment variables (a local `.env` file is loaded
first when present). `REDIS_URL` is the only required value; without it the
process refuses to start.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the presence engine and its HTTP surface."""

    redis_url: str
    hash_secret: str = ""
    key_prefix: Optional[str] = None
    connect_timeout: float = 10.0
    max_retries: int = 3
    log_format: str = "console"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def load_settings(dotenv: bool = True) -> Settings:
    """
    Build settings from the environment.

    Args:
        dotenv: Load a `.env` file before reading variables

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If REDIS_URL is not set or a number is malformed
    """
    if dotenv:
        load_dotenv()

    redis_url = os.getenv("REDIS_URL", "").strip()
    if not redis_url:
        raise ConfigurationError("REDIS_URL environment variable is not set")

    return Settings(
        redis_url=redis_url,
        hash_secret=os.getenv("VISITOR_HASH_SECRET", ""),
        key_prefix=os.getenv("TEST_REDIS_PREFIX") or None,
        connect_timeout=_float_env("REDIS_CONNECT_TIMEOUT", 10.0),
        max_retries=_int_env("REDIS_MAX_RETRIES", 3),
        log_format=os.getenv("LOG_FORMAT", "console").lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 8000),
    )
