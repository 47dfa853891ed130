# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Onionet Contributors

"""Structured logging configuration for onionet.

One process may host a registry, several onion routers and several users
(see ``launch_network``), so every log line carries two context values:

- component: which server wrote the line ("router 3", "user 0", "registry")
- correlation id: which request on that server it belongs to

Both live in ContextVars and are set per request by the HTTP middleware.
Message contents never appear above DEBUG. DEBUG lines may show a short
prefix through :func:`describe_payload`; everything else logs lengths only.
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

_correlation_id: ContextVar[str | None] = ContextVar("onionet_correlation_id", default=None)
_component: ContextVar[str | None] = ContextVar("onionet_component", default=None)

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("aiohttp.access", "asyncio")


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


def new_correlation_id() -> str:
    """Random 32-hex-digit request id."""
    return uuid.uuid4().hex


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str, None, None]:
    """Scope a correlation id, generating one if none is given.

    Example:
        with correlation_context() as cid:
            logger.info("Peeling layer")  # tagged with cid
    """
    cid = correlation_id or new_correlation_id()
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def get_component() -> str | None:
    return _component.get()


@contextmanager
def component_context(component: str | None) -> Generator[None, None, None]:
    """Scope the name of the component handling the current request."""
    token = _component.set(component)
    try:
        yield
    finally:
        _component.reset(token)


def describe_payload(payload: str | None, prefix: int = 12) -> str:
    """Short, non-revealing description of a wire payload for log lines."""
    if payload is None:
        return "<none>"
    head = payload[:prefix]
    more = "..." if len(payload) > prefix else ""
    return f"{len(payload)} chars [{head}{more}]"


def _context_fields() -> dict[str, str]:
    fields = {}
    component = get_component()
    if component:
        fields["component"] = component
    cid = get_correlation_id()
    if cid:
        fields["correlation_id"] = cid
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log collectors and log files."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }

        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}:{record.lineno}"

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


class StandardFormatter(logging.Formatter):
    """Human-readable lines for a terminal.

    ``12:00:01 INFO  onionet.network.router [router 3 1f2e3d4c] Relayed ...``
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    DIM = "\033[90m"
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_colors = use_colors and sys.stderr.isatty()

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{self.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        fields = _context_fields()
        tags = [fields["component"]] if "component" in fields else []
        if "correlation_id" in fields:
            tags.append(fields["correlation_id"][:8])
        context = self._paint(f"[{' '.join(tags)}] ", self.DIM) if tags else ""

        level = self._paint(f"{record.levelname:<5}", self.LEVEL_COLORS.get(record.levelname, ""))
        line = f"{self.formatTime(record, self.datefmt)} {level} {record.name} {context}{record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _use_json(json_format: bool | None, configured: str) -> bool:
    if json_format is not None:
        return json_format
    if configured.lower() in ("json", "text"):
        return configured.lower() == "json"
    # Unset: JSON unless a person is watching
    return not sys.stderr.isatty()


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install onionet's handlers on the root logger.

    Arguments left as None fall back to ``ONIONET_LOG_LEVEL``,
    ``ONIONET_LOG_FORMAT`` and ``ONIONET_LOG_FILE``. The log file is always
    written as JSON.
    """
    from .config import get_config

    config = get_config()

    level = level if level is not None else config.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if _use_json(json_format, config.log_format) else StandardFormatter())
    root.addHandler(console)

    log_file = log_file if log_file is not None else config.log_file
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
