from __future__ import annotations

import contextvars
import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "camera_router"
LOG_FILE_NAME = "camera-router.log.jsonl"

_REQUEST_ID: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "camera_router_request_id",
    default=None,
)


def bind_request_id(request_id: str) -> contextvars.Token[str | None]:
    """Tag every event logged from this context (and tasks it spawns) with `request_id`."""
    return _REQUEST_ID.set(request_id)


def reset_request_id(token: contextvars.Token[str | None] | None) -> None:
    if token is not None:
        _REQUEST_ID.reset(token)


def current_request_id() -> str | None:
    return _REQUEST_ID.get()


class _RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        request_id = _REQUEST_ID.get()
        if request_id is not None and not hasattr(record, "request_id"):
            record.request_id = request_id
        return True


def _log_dir() -> Path | None:
    for candidate in (
        Path(settings.out_dir) / "logs",
        Path(gettempdir()) / "camera-router" / "logs",
    ):
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        return candidate
    return None


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_configured", False):
        return logger

    level = logging.getLevelName(settings.log_level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    logger.propagate = False
    logger.addFilter(_RequestContextFilter())

    formatter = jsonlogger.JsonFormatter("%(levelname)s %(name)s %(message)s", timestamp=True)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = _log_dir()
    if log_dir is not None:
        try:
            handlers.append(logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8"))
        except OSError:
            # Read-only filesystems still get stream logging.
            pass
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured record; `event` is both the message and a top-level key."""
    get_logger().log(level, event, extra={"event": event, **fields})
