#!/usr/bin/env python3
"""
config.py - Environment-based configuration for catalog-search.

Settings are read from the process environment (optionally seeded from a
``.env`` file) once, validated leniently, and cached. Invalid values fall back
to defaults with a warning rather than failing startup.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from catalog_search.logger import LOG_FORMATS, get_logger, safe_bool, safe_float, safe_int

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_DB_PATH = "/data/catalog.w3cat"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_REFRESH_HOUR = 0
DEFAULT_MAX_DEPTH = 100
DEFAULT_DEBOUNCE_SECS = 0.5


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration."""

    db_path: str = DEFAULT_DB_PATH
    exclude_patterns: List[str] = field(default_factory=list)
    min_file_size: int = 0
    nightly_refresh_hour: int = DEFAULT_REFRESH_HOUR
    max_ancestry_depth: int = DEFAULT_MAX_DEPTH
    debounce_secs: float = DEFAULT_DEBOUNCE_SECS
    watch_enabled: bool = True
    watch_use_polling: bool = False
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    log_format: str = "text"


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def parse_exclude_patterns(raw: Optional[str]) -> List[str]:
    """Split a comma separated pattern list, dropping blanks."""
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


def _parse_refresh_hour(value: Optional[str]) -> int:
    hour = safe_int(value, DEFAULT_REFRESH_HOUR, logger=logger, context="NIGHTLY_REFRESH_HOUR")
    if hour < 0 or hour > 23:
        logger.warning(
            f"Invalid refresh hour {hour}, must be 0-23. Using default: {DEFAULT_REFRESH_HOUR}"
        )
        return DEFAULT_REFRESH_HOUR
    return hour


_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _parse_log_level(value: Optional[str]) -> str:
    level = (value or "INFO").strip().upper()
    if level not in _LOG_LEVELS:
        logger.warning(f"Invalid LOG_LEVEL {value!r}, using default: INFO")
        return "INFO"
    return level


def _parse_log_format(value: Optional[str]) -> str:
    fmt = (value or "text").strip().lower()
    if fmt not in LOG_FORMATS:
        logger.warning(f"Invalid LOG_FORMAT {value!r}, must be one of {LOG_FORMATS}. Using default: text")
        return "text"
    return fmt


def load_config(env_file: Optional[str | Path] = None) -> Settings:
    """Load configuration from environment variables.

    ``env_file`` (or a ``.env`` in the working directory) only fills in
    variables that are not already set in the environment.
    """
    load_dotenv(env_file, override=False)
    env = os.environ

    return Settings(
        db_path=env.get("CATALOG_DB_PATH") or env.get("DB_PATH") or DEFAULT_DB_PATH,
        exclude_patterns=parse_exclude_patterns(env.get("EXCLUDE_PATTERNS")),
        min_file_size=safe_int(env.get("MIN_FILE_SIZE"), 0, logger=logger, context="MIN_FILE_SIZE"),
        nightly_refresh_hour=_parse_refresh_hour(env.get("NIGHTLY_REFRESH_HOUR")),
        max_ancestry_depth=safe_int(
            env.get("MAX_ANCESTRY_DEPTH"), DEFAULT_MAX_DEPTH, logger=logger, context="MAX_ANCESTRY_DEPTH"
        ),
        debounce_secs=safe_float(
            env.get("WATCH_DEBOUNCE_SECS"), DEFAULT_DEBOUNCE_SECS, logger=logger, context="WATCH_DEBOUNCE_SECS"
        ),
        watch_enabled=safe_bool(env.get("WATCH_ENABLED"), True, logger=logger, context="WATCH_ENABLED"),
        watch_use_polling=safe_bool(
            env.get("WATCH_USE_POLLING"), False, logger=logger, context="WATCH_USE_POLLING"
        ),
        host=env.get("HOST") or DEFAULT_HOST,
        port=safe_int(env.get("PORT"), DEFAULT_PORT, logger=logger, context="PORT"),
        log_level=_parse_log_level(env.get("LOG_LEVEL")),
        log_format=_parse_log_format(env.get("LOG_FORMAT")),
    )


def validate_config(config: Settings) -> List[str]:
    """Return a list of configuration problems (empty if valid)."""
    errors: List[str] = []
    if config.port < 1 or config.port > 65535:
        errors.append(f"Invalid port number: {config.port}. Must be between 1-65535")
    if config.min_file_size < 0:
        errors.append(f"Invalid minimum file size: {config.min_file_size}. Must be >= 0")
    if config.max_ancestry_depth < 1:
        errors.append(f"Invalid ancestry depth: {config.max_ancestry_depth}. Must be >= 1")
    if config.debounce_secs < 0:
        errors.append(f"Invalid debounce window: {config.debounce_secs}. Must be >= 0")
    return errors


_config: Optional[Settings] = None


def get_config() -> Settings:
    """Get the configuration (loads on first call)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
