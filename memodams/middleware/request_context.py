"""
Request context middleware.

WHAT: Middleware that extracts request context (request id, client IP,
user agent, device id) and makes it available throughout the request
lifecycle.

WHY: Audit entries and log lines need to say where a sign-in came from.
The device id is what binds step-up challenges and trusted-device flags
to one browser, so it is captured here once instead of in every handler.

HOW: Stores context in request.state and in a ContextVar so services and
DAOs can read it without being handed the request object.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

DEVICE_ID_HEADER = "X-Device-Id"
REQUEST_ID_HEADER = "X-Request-ID"

# Client-chosen ids are accepted only in this shape
_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{8,64}$")


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped context data.

    Fields:
    - request_id: Identifier for log correlation (client supplied or generated)
    - ip_address: Client's real IP (considering proxies)
    - user_agent: Client's browser/application identifier
    - path / method: What was requested
    - device_id: Value of the X-Device-Id header when well-formed
    """

    request_id: str
    ip_address: str
    user_agent: Optional[str]
    path: str
    method: str
    device_id: Optional[str] = None


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Extract the real client IP address from a request.

    HOW: Checks headers in order of trust:
    1. X-Real-IP (set by nginx-style proxies)
    2. X-Forwarded-For (first entry is the original client)
    3. request.client.host (direct connection IP)

    Security Note:
        These headers can be spoofed by clients if not behind a trusted proxy.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("User-Agent")


def normalize_client_id(value: Optional[str]) -> Optional[str]:
    """Return the id if it is well-formed, otherwise None."""
    if value and _ID_PATTERN.match(value.strip()):
        return value.strip()
    return None


def get_device_id(request: Request) -> Optional[str]:
    """Device id from the X-Device-Id header, ignoring malformed values."""
    return normalize_client_id(request.headers.get(DEVICE_ID_HEADER))


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    Example:
        @app.get("/api/example")
        async def example(request: Request):
            ctx = get_request_context()
            print(f"Request {ctx.request_id} from {ctx.ip_address}")
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Reuse the caller's request id so traces line up across services
        request_id = normalize_client_id(request.headers.get(REQUEST_ID_HEADER))
        if request_id is None:
            request_id = str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
            path=request.url.path,
            method=request.method,
            device_id=get_device_id(request),
        )

        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        finally:
            _request_context.reset(token)
