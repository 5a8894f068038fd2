"""
MemoDams API application.

WHAT: Builds the FastAPI app that fronts the account access gate.

HOW: Middleware is added innermost first, so requests pass through CORS,
security headers, rate limiting, then request context before reaching a
router. Every router lives under /api.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from memodams.core.config import settings
from memodams.core.exceptions import AppException
from memodams.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from memodams.middleware import SecurityHeadersMiddleware, RequestContextMiddleware, RateLimitMiddleware
from memodams.api import auth, oauth, step_up, mfa, security_question, devices, admin, profile


ROUTERS = (auth, oauth, step_up, mfa, security_question, devices, admin, profile)


def create_app() -> FastAPI:
    """
    Assemble the application.

    WHY: A factory keeps import side effects out of tests that want a
    fresh app.
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Account access gate: sign-in, step-up verification and admin grants",
        version=settings.VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Every error leaves as {error, message, details}; internals never leak.
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Audit rows read IP, user agent and device id from here.
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # The web client runs on another origin and must read Retry-After on
    # throttled step-up requests.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness only. Does not touch the database or Redis."""
        return {"status": "healthy", "version": settings.VERSION}

    @app.get("/", tags=["root"])
    async def root() -> dict:
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/api/docs",
        }

    for module in ROUTERS:
        app.include_router(module.router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Development only; deployments run `uvicorn memodams.main:app`.
    uvicorn.run(
        "memodams.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
