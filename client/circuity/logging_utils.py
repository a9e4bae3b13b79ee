from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "circuity"

# `extra` keys may not shadow LogRecord attributes, or logging raises KeyError.
_RESERVED_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class EventFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a UTC timestamp and level on every record."""

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("ts", datetime.fromtimestamp(record.created, UTC).isoformat())
        log_record.setdefault("level", record.levelname)
        log_record.setdefault("logger", record.name)


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _resolve_log_dir(configured_out_dir: str) -> Path | None:
    """First writable log directory, or None when nothing is writable."""
    for log_dir in (
        Path(configured_out_dir) / "logs",
        Path(gettempdir()) / "circuity-client" / "logs",
    ):
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            probe = log_dir / ".writetest"
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def _build_handlers(formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_to_file:
        log_dir = _resolve_log_dir(settings.out_dir)
        if log_dir is not None:
            try:
                handlers.append(logging.FileHandler(log_dir / settings.log_file_name, encoding="utf-8"))
            except OSError:
                # Console only.
                pass
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def get_logger(component: str | None = None) -> logging.Logger:
    """The package logger, configured on first use.

    Component loggers (`circuity.<component>`) carry no handlers of their own
    and propagate to the package logger.
    """
    root = logging.getLogger(LOGGER_NAME)
    if not getattr(root, "_configured", False):
        root.setLevel(_parse_level(settings.log_level))
        root.propagate = False
        for handler in _build_handlers(EventFormatter()):
            root.addHandler(handler)
        root._configured = True  # type: ignore[attr-defined]
    return root.getChild(component) if component else root


def _safe_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {(f"field_{key}" if key in _RESERVED_ATTRS else key): value for key, value in fields.items()}


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    if not LOGGER.isEnabledFor(level):
        return
    LOGGER.log(level, event, extra={"event": event, **_safe_fields(fields)})
