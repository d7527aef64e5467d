"""Middleware: request correlation IDs."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from visionrelay.log import RequestLoggerAdapter

if TYPE_CHECKING:
    from starlette.middleware.base import RequestResponseEndpoint
    from starlette.requests import Request
    from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation ID.

    An incoming X-Request-ID header is reused when present, otherwise a new
    ID is generated. The ID is stored on ``request.state.request_id`` and
    echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER, "")[:_MAX_REQUEST_ID_LENGTH] or secrets.token_hex(8)
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def get_request_logger(request: Request, name: str) -> RequestLoggerAdapter:
    """Return a logger for ``name`` bound to the request's correlation ID."""
    request_id = getattr(request.state, "request_id", None) or secrets.token_hex(8)
    return RequestLoggerAdapter(logging.getLogger(name), request_id)
