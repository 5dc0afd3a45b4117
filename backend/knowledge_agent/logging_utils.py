"""
Logging setup and per-call log context.

Context fields (document id, namespace) live in contextvars and are copied
onto every record by ``ContextFilter``. ``log_context`` scopes them to a
block and restores the previous values on exit, so a call made without a
namespace never logs under the last caller's.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.config
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import yaml
from prometheus_client import Counter

from .core.config import Settings

_UNSET = "-"
_CONTEXT_VARS: Dict[str, contextvars.ContextVar] = {
    "document_id": contextvars.ContextVar("document_id", default=_UNSET),
    "namespace": contextvars.ContextVar("namespace", default=_UNSET),
}

# attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    *_CONTEXT_VARS,
}

LOG_EVENTS = Counter(
    "log_events_total",
    "Log records at warning level or above",
    ["logger", "level"],
)


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
    """
    Bind context fields for the duration of a block.

    A ``None`` value binds the unset marker rather than inheriting the
    outer value. Unknown field names raise KeyError.

    Example:
        >>> with log_context(document_id="wp", namespace="pdf"):
        ...     logger.info("Indexed document")
    """
    tokens = []
    for name, value in fields.items():
        var = _CONTEXT_VARS[name]
        tokens.append((var, var.set(value or _UNSET)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(_UNSET)


def current_context() -> Dict[str, str]:
    return {name: var.get() for name, var in _CONTEXT_VARS.items()}


class ContextFilter(logging.Filter):
    """Inject contextvars into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for name, var in _CONTEXT_VARS.items():
            setattr(record, name, var.get())
        return True


class MetricsHandler(logging.Handler):
    """Count records per logger and level, e.g. expansion fallbacks or corrupt snapshots."""

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401
        LOG_EVENTS.labels(logger=record.name, level=record.levelname).inc()


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying the context and any ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "timestamp": record.created,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "context": {name: getattr(record, name, var.get()) for name, var in _CONTEXT_VARS.items()},
        }
        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(settings: Settings) -> None:
    """
    Configure the ``app`` logger tree from logging.yaml.

    Development logs human-readable lines to stderr. Other environments log
    JSON to stdout (unless disabled) and optionally to a rotating file.
    """
    config_path = settings.log_config_path
    if not config_path.exists():
        raise FileNotFoundError(f"Logging configuration not found at {config_path}")

    with config_path.open("r", encoding="utf-8") as fp:
        config: Dict[str, Any] = yaml.safe_load(fp)

    handlers = config["handlers"]
    development = settings.environment.lower() == "development"
    stream = "console" if development or not settings.enable_json_logs else "json"
    app_handlers = [stream, "metrics"]

    if settings.enable_file_logging and not development:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"]["filename"] = str(settings.log_dir / "knowledge_agent.log")
        app_handlers.append("file")
    else:
        # RotatingFileHandler opens its file on construction
        handlers.pop("file", None)

    level = settings.log_level.upper()
    handlers["console"]["level"] = level
    handlers["json"]["level"] = level

    config["root"]["handlers"] = [stream]
    config.setdefault("loggers", {})["app"] = {
        "handlers": app_handlers,
        "level": level,
        "propagate": False,
    }
    logging.config.dictConfig(config)


__all__ = [
    "log_context",
    "clear_context",
    "current_context",
    "ContextFilter",
    "MetricsHandler",
    "JsonFormatter",
    "setup_logging",
]
