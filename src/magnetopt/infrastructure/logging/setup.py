"""structlog + stdlib logging for the server and the CLI.

Everything is rendered by one structlog ``ProcessorFormatter`` (console
or JSON). Records are queued and written from a listener thread so that
a search run never blocks its event loop on terminal or pipe I/O.
"""

from __future__ import annotations

import atexit
import copy
import logging
import logging.config
import queue
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Optional

import structlog

from magnetopt.infrastructure.config.schema import AppConfig

log = structlog.get_logger(__name__)

# Per-request INFO output from the HTTP stack; pinned to WARNING.
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_listener: Optional[QueueListener] = None


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def _drop_color_message(_: Any, __: Any, event_dict: dict[str, Any]) -> dict[str, Any]:
    # uvicorn duplicates every message as "color_message".
    event_dict.pop("color_message", None)
    return event_dict


def _stamp_foreign_record(_: Any, __: Any, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Timestamp stdlib records with their creation time, not their render time."""
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord) and "timestamp" not in event_dict:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        event_dict["timestamp"] = created.isoformat().replace("+00:00", "Z")
    return event_dict


def _shared_processors() -> list[structlog.typing.Processor]:
    # run_id and friends are bound with structlog.contextvars by the search run
    return [
        _drop_color_message,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]


def _formatter(config: AppConfig) -> structlog.stdlib.ProcessorFormatter:
    renderer: structlog.typing.Processor
    if config.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*_shared_processors(), _stamp_foreign_record],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


# ---------------------------------------------------------------------------
# uvicorn dictConfig
# ---------------------------------------------------------------------------


def build_logging_config(config: AppConfig) -> dict[str, Any]:
    """dictConfig handed to ``uvicorn.run``.

    uvicorn applies it at startup; its loggers then propagate into the
    queue installed by :func:`configure_logging`.
    """
    loggers: dict[str, Any] = {
        name: {"handlers": [], "level": config.log_level, "propagate": True}
        for name in ("uvicorn", "uvicorn.error", "magnetopt")
    }
    for name in NOISY_LOGGERS:
        loggers[name] = {"handlers": [], "level": "WARNING", "propagate": True}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "loggers": loggers,
    }


# ---------------------------------------------------------------------------
# Queue-based emission
# ---------------------------------------------------------------------------


class _LevelRange(logging.Filter):
    def __init__(self, low: int = logging.NOTSET, high: int = logging.CRITICAL) -> None:
        super().__init__()
        self._low = low
        self._high = high

    def filter(self, record: logging.LogRecord) -> bool:
        return self._low <= record.levelno <= self._high


class _DictMsgQueueHandler(QueueHandler):
    """QueueHandler that leaves structlog's dict ``record.msg`` alone.

    The stock ``prepare()`` formats the message into a string, which the
    ProcessorFormatter on the listener side can no longer render.
    """

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        return copy.copy(record)


def _stream_handlers(
    formatter: logging.Formatter, *, stdout_logs: bool
) -> list[logging.Handler]:
    """ERROR and above on stderr; the rest on stdout unless stdout is taken."""
    if not stdout_logs:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        return [handler]

    low = logging.StreamHandler(sys.stdout)
    low.addFilter(_LevelRange(high=logging.WARNING))
    high = logging.StreamHandler(sys.stderr)
    high.addFilter(_LevelRange(low=logging.ERROR))
    for handler in (low, high):
        handler.setFormatter(formatter)
    return [low, high]


def _stop_listener() -> None:
    global _listener
    if _listener is None:
        return
    try:
        _listener.stop()
    finally:
        _listener = None


def _install_queue(config: AppConfig, *, stdout_logs: bool) -> None:
    global _listener
    _stop_listener()

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_DictMsgQueueHandler(records))
    root.setLevel(config.log_level)

    # Loggers created before this call may carry their own handlers.
    for name in list(logging.root.manager.loggerDict):
        existing = logging.getLogger(name)
        existing.handlers.clear()
        existing.propagate = True
        noisy = any(name == n or name.startswith(n + ".") for n in NOISY_LOGGERS)
        existing.setLevel(logging.WARNING if noisy else config.log_level)

    _listener = QueueListener(
        records,
        *_stream_handlers(_formatter(config), stdout_logs=stdout_logs),
        respect_handler_level=True,
    )
    _listener.start()
    atexit.register(_stop_listener)


def configure_logging(config: AppConfig, *, stdout_logs: bool = True) -> dict[str, Any]:
    """Configure structlog and stdlib logging; return uvicorn's dictConfig.

    Pass ``stdout_logs=False`` when stdout carries program output (the
    ``search`` command prints NDJSON there).
    """
    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    uvicorn_config = build_logging_config(config)
    logging.config.dictConfig(uvicorn_config)
    _install_queue(config, stdout_logs=stdout_logs)

    log.info(
        "logging_configured", log_format=config.log_format, log_level=config.log_level
    )
    return uvicorn_config
