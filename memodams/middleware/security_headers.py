"""
Security headers middleware.

WHY: OWASP recommends security headers as defense in depth (A05: Security
Misconfiguration). The access gate only serves JSON, so the policy is as
tight as it can be: nothing may be framed, sniffed or cached.
"""

from typing import Callable, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# Applied to every response
SECURITY_HEADERS: Dict[str, str] = {
    # Force HTTPS for a year, subdomains included
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    # JSON API: no scripts, styles or frames are ever expected
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=(), usb=()",
}

# Applied to API responses, which carry tokens and account data
NO_STORE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware that adds security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value

        if request.url.path.startswith("/api"):
            for name, value in NO_STORE_HEADERS.items():
                response.headers[name] = value

        return response
