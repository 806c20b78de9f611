"""
Environment-driven settings for the revenue scan service.

Values are read from the process environment after loading an optional
``.env`` file that sits next to the project root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATABASE_URL = "sqlite:///./leak_radar.db"
DEFAULT_STRIPE_API_VERSION = "2024-06-20"


def load_environment(env_file: Optional[Path] = None) -> bool:
    """Load ``.env`` into ``os.environ`` without overriding existing values."""
    return load_dotenv(env_file or BASE_DIR / ".env", override=False)


def _bool_env(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    val = env.get(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def _int_env(env: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0, got {value}")
    return value


def _str_env(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    encryption_key: Optional[str] = None
    cron_secret: Optional[str] = None
    stripe_api_version: str = DEFAULT_STRIPE_API_VERSION
    stripe_max_retries: int = 2
    scan_max_pages: int = 50
    scan_page_size: int = 100
    mrr_drop_threshold_pct: float = 10.0
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ``)."""
        if env is None:
            load_environment()
            env = os.environ
        page_size = _int_env(env, "SCAN_PAGE_SIZE", 100, minimum=1)
        if page_size > 100:
            # Stripe rejects list limits above 100
            raise ConfigurationError(f"SCAN_PAGE_SIZE must be <= 100, got {page_size}")
        return cls(
            database_url=_str_env(env, "DATABASE_URL") or DEFAULT_DATABASE_URL,
            encryption_key=_str_env(env, "ENCRYPTION_KEY"),
            cron_secret=_str_env(env, "CRON_SECRET"),
            stripe_api_version=_str_env(env, "STRIPE_API_VERSION") or DEFAULT_STRIPE_API_VERSION,
            stripe_max_retries=_int_env(env, "STRIPE_MAX_RETRIES", 2),
            scan_max_pages=_int_env(env, "SCAN_MAX_PAGES", 50, minimum=1),
            scan_page_size=page_size,
            mrr_drop_threshold_pct=_float_env(env, "MRR_DROP_THRESHOLD_PCT", 10.0),
            log_level=(_str_env(env, "LEAK_RADAR_LOG_LEVEL") or "INFO").upper(),
            debug=_bool_env(env, "LEAK_RADAR_DEBUG", False),
        )
