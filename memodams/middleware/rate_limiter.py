"""
Rate limiting middleware for sign-in and step-up endpoints.

WHAT: Redis-backed fixed-window rate limiting for every endpoint that
accepts a guessable secret: passwords, TOTP/SMS codes, security answers
and reset tokens.

WHY: Attempt counters on a step-up challenge bound guesses per sign-in,
but an attacker who knows the password can open new challenges forever.
Limiting per client IP closes that gap and slows credential stuffing
against the login form (OWASP A07).

HOW:
1. Each request increments a counter for IP + bucket
2. Counter key expires after the window duration
3. If counter exceeds limit, return 429 in the standard error envelope
4. Rate limit headers inform clients of their current status

Design decisions:
- Fail-open: If Redis is unavailable, allow requests (prevents self-DOS)
- Buckets: all step-up paths share one bucket, whatever the challenge id
"""

from dataclasses import dataclass
from typing import Optional, Dict, Tuple
import logging
import redis.asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from memodams.core.config import settings
from memodams.middleware.request_context import get_client_ip


logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class RateLimitConfig:
    """
    Configuration for one rate limit bucket.

    WHY: Different endpoints need different limits:
    - Login: Strict (5/min) to prevent brute force
    - Step-up: Moderate (10/min) to allow typos across several pages
    - Password reset: Very strict (3/min) to prevent harassment
    """

    requests_per_window: int = 5
    """Maximum number of requests allowed in the window."""

    window_seconds: int = 60
    """Duration of the rate limit window in seconds."""

    key_prefix: str = "ratelimit"
    """Redis key prefix for rate limit counters."""


AUTH_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "/api/auth/login": RateLimitConfig(
        requests_per_window=5,
        window_seconds=60,
        key_prefix="ratelimit:login",
    ),
    "/api/auth/oauth/google/token": RateLimitConfig(
        requests_per_window=5,
        window_seconds=60,
        key_prefix="ratelimit:oauth-token",
    ),
    "/api/auth/register": RateLimitConfig(
        requests_per_window=10,
        window_seconds=60,
        key_prefix="ratelimit:register",
    ),
    "/api/auth/forgot-password": RateLimitConfig(
        requests_per_window=3,
        window_seconds=60,
        key_prefix="ratelimit:forgot-password",
    ),
    "/api/auth/reset-password": RateLimitConfig(
        requests_per_window=5,
        window_seconds=60,
        key_prefix="ratelimit:reset-password",
    ),
    "/api/auth/send-verification-email": RateLimitConfig(
        requests_per_window=3,
        window_seconds=60,
        key_prefix="ratelimit:verification-email",
    ),
    "/api/admin/grant-admin": RateLimitConfig(
        requests_per_window=10,
        window_seconds=60,
        key_prefix="ratelimit:grant-admin",
    ),
}

# Prefix-matched buckets; the path suffix (challenge id) is not part of the key
PREFIX_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "/api/auth/step-up/": RateLimitConfig(
        requests_per_window=10,
        window_seconds=60,
        key_prefix="ratelimit:step-up",
    ),
}


def resolve_rate_limit(method: str, path: str) -> Optional[Tuple[str, RateLimitConfig]]:
    """
    Find the bucket that applies to a request.

    Only state-changing requests are limited; loading a challenge page is
    free so a refresh never locks a user out.

    Returns:
        (bucket name, config) or None when the request is not limited
    """
    if method.upper() != "POST":
        return None
    if path in AUTH_RATE_LIMITS:
        return path, AUTH_RATE_LIMITS[path]
    for prefix, config in PREFIX_RATE_LIMITS.items():
        if path.startswith(prefix):
            return prefix, config
    return None


# ============================================================================
# Rate Limit Result
# ============================================================================


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    reset_after: int
    limit: int


# ============================================================================
# Rate Limiter Service
# ============================================================================


class RateLimiter:
    """
    Rate limiter service using Redis.

    HOW: Uses Redis pipeline for atomic increment + expire:
    1. INCR key (increments counter, creates with value 1 if new)
    2. EXPIRE key window_seconds NX (TTL only set on the first hit)
    3. Compare counter to limit
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        config: Optional[RateLimitConfig] = None,
    ):
        self._redis = redis_client
        self._config = config or RateLimitConfig()

    def _build_key(self, identifier: str, bucket: str, config: RateLimitConfig) -> str:
        """Format: {prefix}:{bucket_normalized}:{identifier}"""
        normalized_bucket = bucket.strip("/").replace("/", ":")
        return f"{config.key_prefix}:{normalized_bucket}:{identifier}"

    async def check_rate_limit(
        self,
        identifier: str,
        bucket: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """
        Increment the counter for (identifier, bucket) and compare to the limit.

        Args:
            identifier: Client identifier (IP address)
            bucket: Bucket name (endpoint path or prefix)
            config: Limits for this bucket (defaults to the limiter's own)

        Returns:
            RateLimitResult with allowed status and metadata
        """
        config = config or self._config
        key = self._build_key(identifier, bucket, config)

        try:
            pipe = self._redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, config.window_seconds, nx=True)
            pipe.ttl(key)

            results = await pipe.execute()
            current_count = results[0]
            ttl = results[2] if isinstance(results[2], int) and results[2] > 0 else config.window_seconds

            return RateLimitResult(
                allowed=current_count <= config.requests_per_window,
                remaining=max(0, config.requests_per_window - current_count),
                reset_after=ttl,
                limit=config.requests_per_window,
            )

        except Exception as e:
            # Fail-open: a Redis outage must not lock every user out
            logger.error(
                f"Rate limit Redis error (allowing request): {e}",
                extra={
                    "identifier": identifier,
                    "bucket": bucket,
                    "error": str(e),
                },
            )
            return RateLimitResult(
                allowed=True,
                remaining=-1,  # Unknown
                reset_after=config.window_seconds,
                limit=config.requests_per_window,
            )


# ============================================================================
# Global Rate Limiter Instance
# ============================================================================


_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """
    Get or create global rate limiter instance.

    Returns:
        RateLimiter instance
    """
    global _rate_limiter

    if _rate_limiter is None:
        redis_client = await aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        _rate_limiter = RateLimiter(redis_client=redis_client)

    return _rate_limiter


# ============================================================================
# Rate Limit Middleware
# ============================================================================


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware applying rate limits to sign-in and step-up endpoints.

    Usage:
        app.add_middleware(RateLimitMiddleware)
    """

    async def dispatch(self, request: Request, call_next):
        match = resolve_rate_limit(request.method, request.url.path)
        if match is None:
            return await call_next(request)

        bucket, config = match
        identifier = get_client_ip(request)

        try:
            limiter = await get_rate_limiter()
            result = await limiter.check_rate_limit(identifier, bucket, config)
        except Exception as e:
            logger.error(f"Rate limit middleware error: {e}")
            return await call_next(request)

        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(result.reset_after),
        }

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"identifier": identifier, "bucket": bucket},
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "RateLimitExceeded",
                    "message": f"Rate limit exceeded. Try again in {result.reset_after} seconds.",
                    "status_code": 429,
                    "details": {"retry_after": result.reset_after},
                },
                headers={**headers, "Retry-After": str(result.reset_after)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
