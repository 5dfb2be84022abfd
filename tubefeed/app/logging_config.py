from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from tubefeed.app.config import AppSettings
from tubefeed.app.telemetry import TELEMETRY_LOGGER_NAME, scrub_credentials

APP_LOGGER_NAME = "tubefeed"
LOG_FILE_NAME = "tubefeed.log"
TELEMETRY_LOG_FILE_NAME = "tubefeed-telemetry.log"


def configure_application_logging(settings: AppSettings) -> Path:
    """
    Route `tubefeed.*` loggers to stdout and a rotating JSON file.

    Telemetry events get their own rotating file and never reach the
    application log. Every record passes through `_scrub_credentials` so API
    keys embedded in URLs or upstream error text are not written anywhere.
    Safe to call repeatedly; handlers are replaced, not stacked.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME

    _configure_structlog()

    console_handler = logging.StreamHandler(stream=sys.stdout)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(
        _console_formatter(enable_colors=_stream_supports_color(sys.stdout))
    )
    _install_handlers(
        APP_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[
            console_handler,
            _rotating_file_handler(log_file, settings, level=logging.DEBUG),
        ],
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[_rotating_file_handler(telemetry_log_file, settings, level=logging.INFO)],
    )

    logging.getLogger(APP_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s "
        "max_bytes=%s backups=%s",
        settings.log_level.upper(),
        log_file,
        telemetry_log_file,
        settings.log_max_bytes,
        settings.log_backup_count,
    )
    return log_file


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)


def _rotating_file_handler(path: Path, settings: AppSettings, *, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_json_formatter())
    return handler


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _foreign_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _console_formatter(*, enable_colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_foreign_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _scrub_credentials,
            structlog.dev.ConsoleRenderer(colors=enable_colors),
        ],
    )


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_foreign_pre_chain(),
        processors=[
            _add_source_location,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _scrub_credentials,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    )


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["pathname"] = record.pathname
        event_dict["lineno"] = record.lineno
        event_dict["func_name"] = record.funcName
        event_dict["thread_name"] = record.threadName
    return event_dict


def _scrub_credentials(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = scrub_credentials(value)
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except Exception:
        return False
