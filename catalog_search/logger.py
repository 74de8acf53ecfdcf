"""Logging setup and shared errors for catalog-search.

Records go to stderr (stdout is reserved for CLI JSON), either as plain text
or as one JSON object per line when ``LOG_FORMAT=json``. ``ContextLogger``
attaches fields such as the catalog path or generation number to every record
so the JSON output can be filtered per rebuild.
"""
import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, TextIO, TypeVar

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMATS = ("text", "json")

_T = TypeVar("_T")
_handler: Optional[logging.Handler] = None


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with context fields merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = getattr(record, "extra_fields", None)
        if fields:
            payload.update(fields)
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc) if exc else None,
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }
        return json.dumps(payload, default=str)


def _level_from(name: Optional[str]) -> int:
    level = getattr(logging, (name or "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """(Re)install the catalog-search handler on the root logger.

    ``level`` and ``log_format`` default to ``LOG_LEVEL`` / ``LOG_FORMAT``.
    Calling it again swaps the previous handler, so the CLI and the service
    can switch to JSON after their settings are loaded.
    """
    global _handler
    log_format = (log_format or os.environ.get("LOG_FORMAT") or "text").lower()
    handler = logging.StreamHandler(stream or sys.stderr)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(_level_from(level or os.environ.get("LOG_LEVEL")))
    _handler = handler
    return handler


configure_logging()


def get_logger(name: str) -> logging.Logger:
    """Module logger; level and format come from the root configuration."""
    return logging.getLogger(name)


class ContextLogger:
    """Logger wrapper that adds context fields to all log messages."""

    __slots__ = ("logger", "context")

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context

    def _log(self, level: int, msg: str, exc_info: Any = None, **extra):
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.logger.name, level, "(unknown file)", 0, msg, (), exc_info
        )
        record.extra_fields = {**self.context, **extra}
        self.logger.handle(record)

    def debug(self, msg: str, **extra):
        self._log(logging.DEBUG, msg, **extra)

    def info(self, msg: str, **extra):
        self._log(logging.INFO, msg, **extra)

    def warning(self, msg: str, **extra):
        self._log(logging.WARNING, msg, **extra)

    def error(self, msg: str, **extra):
        self._log(logging.ERROR, msg, **extra)

    def exception(self, msg: str, **extra):
        """Log at error level with the active exception's traceback."""
        self._log(logging.ERROR, msg, exc_info=sys.exc_info(), **extra)


class CatalogSearchError(Exception):
    """Base exception for all catalog-search errors."""


class SourceUnavailableError(CatalogSearchError):
    """The source catalog is missing, unreadable or not a catalog database."""


class IndexBuildError(CatalogSearchError):
    """A rebuild of the search index failed; the previous generation stays live."""


class IndexNotReadyError(CatalogSearchError):
    """No index generation has been published yet."""


class NoItemsError(CatalogSearchError):
    """The current index generation holds no entries."""


class ConfigurationError(CatalogSearchError):
    """Error in configuration or environment setup."""


def _convert(
    value: Any,
    default: _T,
    parse: Callable[[Any], _T],
    kind: str,
    logger: Optional[logging.Logger],
    context: str,
) -> _T:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return parse(value)
    except (ValueError, TypeError):
        if logger:
            logger.warning(f"Invalid {kind} {value!r} for {context}, using default: {default}")
        return default


def safe_int(value: Any, default: int, logger: Optional[logging.Logger] = None, context: str = "") -> int:
    """Parse an integer setting, falling back to ``default`` with a warning."""
    return _convert(value, default, int, "integer value", logger, context)


def safe_float(value: Any, default: float, logger: Optional[logging.Logger] = None, context: str = "") -> float:
    return _convert(value, default, float, "number", logger, context)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)


def safe_bool(value: Any, default: bool, logger: Optional[logging.Logger] = None, context: str = "") -> bool:
    return _convert(value, default, _parse_bool, "boolean", logger, context)
