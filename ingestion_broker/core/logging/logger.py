#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging for the ingestion broker with:
- Operation ID correlation across retries and fallbacks
- Stage identifiers for execution flow
- JSON formatting for log aggregation
- Automatic credential redaction (SAS tokens, bearer tokens)

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation (ELK, Splunk, etc.)
- Standard library bridge so tenacity's before-sleep logging lands in the same stream

Author: System Architect
Date: 2025-12-05
"""

import logging
import re
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from ingestion_broker.core.config.settings import get_settings

# Context variable for the current ingestion operation
operation_id_ctx: ContextVar[str | None] = ContextVar("operation_id", default=None)

# Query-string credentials on storage URIs and bearer tokens
_SAS_QUERY_PATTERN = re.compile(r"(https?://[^\s?\"']+)\?[^\s\"']*\bsig=[^\s\"']*", re.IGNORECASE)
_SIG_PATTERN = re.compile(r"\bsig=[^&\s\"']+", re.IGNORECASE)
_BEARER_PATTERN = re.compile(r"\bBearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)


def redact_secrets_from_text(text: str) -> str:
    """Strip SAS query strings and bearer tokens from a string."""
    text = _SAS_QUERY_PATTERN.sub(r"\1?[REDACTED]", text)
    text = _SIG_PATTERN.sub("sig=[REDACTED]", text)
    return _BEARER_PATTERN.sub("Bearer [REDACTED]", text)


def add_operation_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add operation ID to log event from context variable.

    STAGE-L.1: Operation ID injection
    """
    operation_id = operation_id_ctx.get()
    if operation_id:
        event_dict["operation_id"] = operation_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_credentials(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact credentials from the message and every string field.

    STAGE-L.3: Credential redaction

    Patterns redacted:
    - Storage URIs with a SAS query string → scheme://host/path?[REDACTED]
    - Stray ``sig=`` values → sig=[REDACTED]
    - Bearer tokens → Bearer [REDACTED]
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = redact_secrets_from_text(value)
    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Uppercase the log level name.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_operation_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_credentials,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage=Stage.RM_REFRESH)
    """
    return structlog.get_logger(name)


def set_operation_id(operation_id: str) -> Token:
    """Set the operation ID for the current ingestion call.

    Returns the token that restores the previous value via reset_operation_id.
    """
    return operation_id_ctx.set(operation_id)


def reset_operation_id(token: Token) -> None:
    operation_id_ctx.reset(token)


def get_operation_id() -> str | None:
    return operation_id_ctx.get()


def clear_operation_id() -> None:
    operation_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Args:
        logger: Logger instance
        stage: Stage identifier (e.g., Stage.ROUTE_FALLBACK)
        message: Log message
        level: Log level (debug, info, warning, error, critical)
        **kwargs: Additional fields to log

    Usage:
        log_stage(logger, Stage.RETRY_FAILED, "Attempt failed", attempt=2)
    """
    log_func = getattr(logger, level.lower())
    stage_value = stage.value if hasattr(stage, "value") else stage
    log_func(message, stage=stage_value, **kwargs)
