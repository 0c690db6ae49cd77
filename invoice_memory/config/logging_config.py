"""
Structured logging configuration using structlog.

Provides JSON-formatted logging with contextual information,
masking of bank details in log events, and integration with
Python's standard logging module.
"""

import logging
import logging.handlers
import re
import sys
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from invoice_memory.config.settings import LogFormat, get_settings


# Patterns for masking payment details that appear in raw invoice text
SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # IBAN (e.g. DE89 3704 0044 0532 0130 00)
    (re.compile(r"\b[A-Z]{2}\d{2}(?:\s?[A-Z0-9]{4}){3,7}(?:\s?[A-Z0-9]{1,3})?\b"), "[IBAN-MASKED]"),
    # Credit card numbers
    (re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"), "[CC-MASKED]"),
    # Email addresses
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL-MASKED]"),
    # BIC / SWIFT codes following a label
    (re.compile(r"\b(?:BIC|SWIFT)[:\s]+[A-Z]{6}[A-Z0-9]{2}(?:[A-Z0-9]{3})?\b", re.IGNORECASE), "[BIC-MASKED]"),
]


def mask_text(text: str) -> str:
    """Apply every sensitive-data pattern to a string."""
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def mask_sensitive(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """
    Mask bank details and e-mail addresses in log entries.

    Args:
        logger: Logger instance.
        method_name: Name of the logging method.
        event_dict: The event dictionary to process.

    Returns:
        EventDict with sensitive values masked.
    """
    if not get_settings().logging.mask_sensitive_data:
        return event_dict

    def mask_value(value: Any) -> Any:
        if isinstance(value, str):
            return mask_text(value)
        if isinstance(value, dict):
            return {k: mask_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(mask_value(item) for item in value)
        return value

    return {key: mask_value(val) for key, val in event_dict.items()}


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add ISO-8601 timestamp to log entries."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def add_service_info(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service metadata to log entries."""
    settings = get_settings()
    event_dict["service"] = settings.app_name
    event_dict["version"] = settings.app_version
    event_dict["environment"] = settings.app_env.value
    return event_dict


def shared_processors(with_service_info: bool = False) -> list[Processor]:
    """Processors run for structlog events and foreign stdlib records alike."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
    ]
    if with_service_info:
        processors.append(add_service_info)
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        mask_sensitive,
    ]
    return processors


def configure_logging() -> None:
    """
    Configure structlog on top of the standard library logging module.

    structlog events are handed to ``ProcessorFormatter``, which renders
    them as JSON or console lines on stdout and, when configured, into a
    rotating log file.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.logging.level.value)
    use_json = settings.logging.format == LogFormat.JSON

    renderer: Processor
    if use_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.stdlib.PositionalArgumentsFormatter(),
            *shared_processors(with_service_info=use_json),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared_processors()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = settings.logging.file_path
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                filename=str(log_file),
                maxBytes=settings.logging.file_max_size_mb * 1024 * 1024,
                backupCount=settings.logging.file_backup_count,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger instance.

    Args:
        name: Logger name. If None, uses the calling module's name.

    Returns:
        Configured structlog BoundLogger instance.
    """
    return structlog.get_logger(name)
