"""Rate limiting middleware — Redis-based fixed window.

Learn: Uses a per-minute counter stored in Redis. Each IP gets a key like
"spinearn:rl:{ip}:{bucket}:{minute}". Admin writes (broadcasts fan out to
every user) get a stricter limit than regular API calls.

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = structlog.get_logger()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, admin_rpm: int = 20):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.admin_rpm = admin_rpm

    @staticmethod
    def bucket_for(method: str, path: str) -> str:
        if method != "GET" and path.startswith("/api/v1/admin/"):
            return "admin"
        return "api"

    async def dispatch(self, request: Request, call_next) -> Response:
        # Try to get Redis — skip rate limiting if unavailable
        try:
            from spinearn.realtime.pubsub import get_redis

            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket = self.bucket_for(request.method, request.url.path)
        rpm = self.admin_rpm if bucket == "admin" else self.default_rpm

        window = int(time.time() // 60)
        key = f"spinearn:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)  # 2-min TTL for safety
        except Exception as e:
            # Redis error — don't block the request
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
