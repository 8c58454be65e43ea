# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""Structured logging configuration for didsign.

Provides:
- JSON formatter for production (machine-parseable)
- Standard formatter for development (human-readable)
- Correlation IDs, bound to the operation id while a signing flow runs
- Operation context (id, DID) attached to every record inside a flow
- Redaction of key, signature and payload material, including structured
  ``extra_data`` passed by callers
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variable for correlation ID (thread/async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Fields bound by operation_context(), emitted with each record
_log_fields: ContextVar[dict[str, Any] | None] = ContextVar("log_fields", default=None)

# Keys whose values are shortened wherever they appear in structured log data
SENSITIVE_FIELDS = frozenset(
    {
        "public_key",
        "publicKey",
        "signer_public_key",
        "signature",
        "signature_map",
        "signatureMap",
        "signing_payload",
        "signingPayload",
    }
)

QUIET_LOGGERS = ("aiohttp", "asyncio")


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
) -> Generator[str, None, None]:
    """Context manager for correlation ID scope.

    Args:
        correlation_id: Optional correlation ID to use. If None, generates a new one.

    Yields:
        The correlation ID being used.

    Example:
        with correlation_context() as cid:
            logger.info("Reconnecting to relay")  # Tagged with cid
    """
    cid = correlation_id or str(uuid.uuid4())
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def get_log_fields() -> dict[str, Any]:
    """Fields bound by the innermost :func:`operation_context`."""
    return dict(_log_fields.get() or {})


@contextmanager
def operation_context(operation_id: str, **fields: Any) -> Generator[str, None, None]:
    """Scope log records to one operation.

    The operation id becomes the correlation id, and ``operation_id`` plus
    any non-None ``fields`` (typically ``did``) are attached to each record
    the JSON formatter writes. Nested scopes inherit outer fields.
    """
    bound = {**get_log_fields(), "operation_id": operation_id}
    bound.update({key: value for key, value in fields.items() if value is not None})
    token = _log_fields.set(bound)
    try:
        with correlation_context(operation_id) as cid:
            yield cid
    finally:
        _log_fields.reset(token)


def redact(value: Any, keep: int = 16) -> str:
    """Shorten key/signature material for log output."""
    if value is None:
        return "<none>"
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
    else:
        text = str(value)
    if len(text) <= keep:
        return text
    return f"{text[:keep]}...({len(text)} chars)"


def redact_fields(data: Any) -> Any:
    """Copy ``data`` with every :data:`SENSITIVE_FIELDS` value passed through :func:`redact`."""
    if isinstance(data, dict):
        return {
            key: redact(value) if key in SENSITIVE_FIELDS else redact_fields(value) for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_fields(item) for item in data]
    return data


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments.

    Includes the correlation ID and bound operation fields when present in
    context. Sensitive values in ``extra_data`` are redacted.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        fields = get_log_fields()
        if fields:
            log_data["operation"] = redact_fields(fields)

        # Add source location for errors
        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = redact_fields(record.extra_data)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Standard log formatter for development.

    Human-readable format with colors for terminal output.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    CORRELATION_COLOR = "\033[90m"  # Gray

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers see the original record
        record = logging.makeLogRecord(record.__dict__)

        correlation_id = get_correlation_id()
        if correlation_id:
            tag = correlation_id[:8]
            if get_log_fields().get("operation_id") == correlation_id:
                tag = f"op:{tag}"
            if self.use_colors:
                cid_str = f"{self.CORRELATION_COLOR}[{tag}]{self.RESET} "
            else:
                cid_str = f"[{tag}] "
            record.msg = cid_str + str(record.msg)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Configure logging for didsign services.

    Args:
        level: Log level; defaults to ``DIDSIGN_LOG_LEVEL``.
        json_format: Use JSON format (auto-detect if None)
        log_file: Optional file to write logs to

    Environment variables:
        DIDSIGN_LOG_LEVEL: Log level
        DIDSIGN_LOG_FORMAT: Log format ("json" or "text", auto-detect if unset)
        DIDSIGN_LOG_FILE: Log file path
    """
    from .config import get_config

    config = get_config()

    if level is None:
        level = config.log_level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        format_env = config.log_format.lower()
        if format_env == "json":
            json_format = True
        elif format_env == "text":
            json_format = False
        else:
            # Auto-detect: use JSON if not in a terminal
            json_format = not sys.stderr.isatty()

    log_file = config.log_file if log_file is None else log_file

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        # Always use JSON for file output
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
