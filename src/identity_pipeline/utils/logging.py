from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, cast

import structlog
from loguru import logger as loguru_logger
from structlog.exceptions import DropEvent
from structlog.stdlib import BoundLogger
from structlog.typing import EventDict, Processor, WrappedLogger

from identity_pipeline.utils.sanitize import REDACTED, is_secret_key, redact_value


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {message} | {extra}"
DEFAULT_LOG_FILENAME = "identity-pipeline.log"
_RESERVED_KEYS = frozenset({"event", "level", "timestamp"})


@dataclass(slots=True)
class LoggingOptions:
    """Where pipeline logs go and how verbose they are.

    The file sink is opt-in: the pipeline is usually embedded in a host
    application that owns its own log files.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False
    rotation: str = "10 MB"
    retention: str = "14 days"
    backtrace: bool = False
    diagnose: bool = False
    log_to_file: bool = False
    log_path: Optional[Path] = None


_configured_log_path: Optional[Path] = None
_is_configured = False
# Only sinks added here are removed on reconfiguration; host sinks stay.
_sink_ids: list[int] = []
_LOGURU_DEFAULT_SINK = 0


def _resolve_log_path(opts: LoggingOptions) -> Path | None:
    if opts.log_path is not None:
        return opts.log_path
    if not opts.log_to_file:
        return None
    from identity_pipeline.config.settings import log_dir

    return log_dir() / DEFAULT_LOG_FILENAME


def _install_sinks(opts: LoggingOptions, log_path: Path | None) -> None:
    stale = list(_sink_ids) if _is_configured else [_LOGURU_DEFAULT_SINK]
    for sink_id in stale:
        try:
            loguru_logger.remove(sink_id)
        except ValueError:
            # Already removed by the host application.
            continue
    _sink_ids.clear()

    _sink_ids.append(
        loguru_logger.add(
            sys.stderr,
            level="DEBUG" if opts.debug else opts.level,
            colorize=True,
            enqueue=True,
            backtrace=opts.backtrace or opts.debug,
            diagnose=opts.diagnose or opts.debug,
            format=LOG_FORMAT,
        )
    )
    if log_path is not None:
        _sink_ids.append(
            loguru_logger.add(
                log_path,
                level="DEBUG",
                rotation=opts.rotation,
                retention=opts.retention,
                enqueue=True,
                encoding="utf-8",
                format=LOG_FORMAT,
            )
        )


def _processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _log_to_loguru,
    ]


def configure_logging(options: LoggingOptions | None = None) -> Path | None:
    """Route structlog events into loguru sinks; returns the log file, if any."""

    global _configured_log_path, _is_configured

    opts = options or LoggingOptions()
    log_path = _resolve_log_path(opts)
    _install_sinks(opts, log_path)

    threshold = logging.DEBUG if opts.debug else getattr(logging, opts.level.upper(), logging.INFO)
    structlog.configure(
        processors=_processors(),
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        cache_logger_on_first_use=True,
    )

    _configured_log_path = log_path
    _is_configured = True
    return log_path


def _redact_secrets(
    _: WrappedLogger,
    __: str,
    event_dict: EventDict,
) -> EventDict:
    for key, value in list(event_dict.items()):
        if key in _RESERVED_KEYS:
            continue
        event_dict[key] = REDACTED if is_secret_key(key) else redact_value(value)
    return event_dict


def _log_to_loguru(
    _: WrappedLogger,
    __: str,
    event_dict: EventDict,
) -> EventDict:
    level = str(event_dict.pop("level", "INFO")).upper()
    message = str(event_dict.pop("event", ""))
    timestamp = event_dict.pop("timestamp", None)
    exception = event_dict.pop("exception", None)
    event_dict.pop("stack", None)
    if exception:
        message = f"{message}\n{exception}"
    bound = loguru_logger.bind(**event_dict)
    if timestamp:
        bound = bound.bind(timestamp=timestamp)
    bound.opt(depth=6).log(level, message)
    raise DropEvent


def get_logger(*initial_values: object, **initial_kw: object) -> BoundLogger:
    log = structlog.get_logger(*initial_values, **initial_kw)
    if not _is_configured:
        configure_logging()
    return cast(BoundLogger, log)


def log_file_path() -> Path | None:
    return _configured_log_path


__all__ = ["LoggingOptions", "configure_logging", "get_logger", "log_file_path"]
