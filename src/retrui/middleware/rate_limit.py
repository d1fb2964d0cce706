"""固定窗口限流中间件（按客户端 IP）."""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# 记录数超过该值时顺带清理过期窗口
_PRUNE_THRESHOLD = 10_000


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class FixedWindowRateLimiter:
    """固定窗口计数器."""

    def __init__(
        self,
        requests: int = 20,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.requests = requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> RateLimitDecision:
        """记录一次请求并判断是否放行."""
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now > window.reset_at:
            if len(self._windows) >= _PRUNE_THRESHOLD:
                self._prune(now)
            self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
            return RateLimitDecision(allowed=True)

        if window.count >= self.requests:
            return RateLimitDecision(
                allowed=False,
                retry_after=max(1, math.ceil(window.reset_at - now)),
            )

        window.count += 1
        return RateLimitDecision(allowed=True)

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        self._windows.clear()


def client_ip(request: Request) -> str:
    """客户端 IP：X-Forwarded-For 第一项，其次 X-Real-IP，最后是连接地址."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """只对 /api/ 路径限流."""

    def __init__(
        self,
        app: ASGIApp,
        limiter: FixedWindowRateLimiter,
        prefix: str = "/api/",
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.prefix = prefix
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled or not request.url.path.startswith(self.prefix):
            return await call_next(request)

        ip = client_ip(request)
        decision = self.limiter.hit(ip)
        if decision.allowed:
            return await call_next(request)

        logger.warning(f"请求过于频繁: {ip} {request.url.path}")
        return JSONResponse(
            status_code=429,
            content={"error": "Too many requests", "retryAfter": decision.retry_after},
            headers={
                "Retry-After": str(decision.retry_after),
                "X-RateLimit-Limit": str(self.limiter.requests),
                "X-RateLimit-Window": str(int(self.limiter.window_seconds * 1000)),
            },
        )
