"""
Shared aiohttp plumbing for the registry, onion routers and users.

- :func:`read_json` parses a request body or raises ValidationException
- :func:`error_response` turns an exception into the JSON error body and
  status code callers see
- :func:`result_response` wraps getter values as ``{"result": ...}``
- :func:`create_app` builds a component's application with the shared
  middlewares; every request's log lines carry the component name and a
  correlation id
"""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

from onionet.core.exceptions import (
    ForwardFailure,
    InsufficientNodes,
    InvalidNodeKey,
    OnionetException,
    PacketRejected,
    RegistrationError,
    ValidationException,
)
from onionet.core.logging import component_context, correlation_context

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
COMPONENT_KEY = web.AppKey("component", str)


async def read_json(request: web.Request) -> Any:
    """Decoded JSON body of ``request``.

    Raises:
        ValidationException: If the body is not valid JSON.
    """
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationException(f"Invalid JSON body: {e}") from e


def status_for(exc: Exception) -> int:
    """HTTP status for an exception raised while serving a request."""
    if isinstance(exc, (PacketRejected, ValidationException)):
        return 400
    if isinstance(exc, InsufficientNodes):
        return 503
    if isinstance(exc, ForwardFailure):
        return 504 if exc.timed_out else 502
    if isinstance(exc, (RegistrationError, InvalidNodeKey)):
        return 502
    return 500


def error_response(exc: Exception) -> web.Response:
    """JSON error body for ``exc``.

    Rejected packets get a generic body so an upstream hop cannot tell a
    malformed packet from one encrypted for another router. Unexpected
    exceptions never leak their message.
    """
    status = status_for(exc)
    if isinstance(exc, PacketRejected):
        body = exc.public_dict()
    elif isinstance(exc, OnionetException):
        body = exc.to_dict()
    else:
        body = {"error": "InternalError", "message": "Internal error", "details": {}}
    return web.json_response(body, status=status)


def result_response(value: Any) -> web.Response:
    """Getter response; unset slots serialize as ``null``."""
    return web.json_response({"result": value})


def text_response(text: str = "success") -> web.Response:
    return web.Response(text=text)


@web.middleware
async def correlation_middleware(request: web.Request, handler):
    """Run each request inside its component's and its own correlation context."""
    with component_context(request.app.get(COMPONENT_KEY)):
        with correlation_context(request.headers.get(CORRELATION_HEADER)):
            return await handler(request)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map exceptions a handler did not catch to JSON error bodies."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except OnionetException as e:
        logger.warning(f"{request.method} {request.path} failed: {e.__class__.__name__}: {e.message}")
        return error_response(e)
    except Exception as e:
        logger.exception(f"Unhandled error serving {request.method} {request.path}")
        return error_response(e)


MIDDLEWARES = (correlation_middleware, error_middleware)


def create_app(component: str) -> web.Application:
    """Application for one component, named in its log lines."""
    app = web.Application(middlewares=MIDDLEWARES)
    app[COMPONENT_KEY] = component
    return app
