"""
Middleware package.

WHY: Middleware provides cross-cutting concerns like security headers,
request context and rate limiting that apply to all requests.
"""

from memodams.middleware.security_headers import SecurityHeadersMiddleware
from memodams.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_client_ip,
    get_user_agent,
    get_device_id,
    RequestContext,
)
from memodams.middleware.rate_limiter import (
    RateLimitMiddleware,
    RateLimiter,
    RateLimitConfig,
    RateLimitResult,
    get_rate_limiter,
    resolve_rate_limit,
    AUTH_RATE_LIMITS,
    PREFIX_RATE_LIMITS,
)

__all__ = [
    # Security
    "SecurityHeadersMiddleware",
    # Request context
    "RequestContextMiddleware",
    "get_request_context",
    "get_client_ip",
    "get_user_agent",
    "get_device_id",
    "RequestContext",
    # Rate limiting
    "RateLimitMiddleware",
    "RateLimiter",
    "RateLimitConfig",
    "RateLimitResult",
    "get_rate_limiter",
    "resolve_rate_limit",
    "AUTH_RATE_LIMITS",
    "PREFIX_RATE_LIMITS",
]
