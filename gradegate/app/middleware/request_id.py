"""Request ID middleware.

Every request gets an ID that is echoed back in the X-Request-ID header,
stored on ``request.state`` and bound to the logging context so that log
lines emitted while handling the request carry it.
"""

import re
import uuid
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from gradegate.app.core.logging import request_id_var

REQUEST_ID_HEADER = "X-Request-ID"

# Incoming IDs are echoed into logs and headers, so keep them short and plain
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def resolve_request_id(incoming: Optional[str]) -> str:
    """Return the caller's request ID when well-formed, a new UUID otherwise."""
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a request ID and bind it for the duration of the request."""

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = resolve_request_id(request.headers.get(self.header_name))
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[self.header_name] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Request ID assigned by RequestIdMiddleware, or "unknown" outside it."""
    return getattr(request.state, "request_id", "unknown")
