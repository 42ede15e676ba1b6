from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import _env_bool, _env_int

logger = logging.getLogger("articledesk.rate_limit")


def is_rate_limit_enabled() -> bool:
    # pytest 运行期间与 APP_ENV=test 时关闭
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    if (os.environ.get("APP_ENV") or "").strip().lower() in {"test", "testing"}:
        return False
    return _env_bool("RATE_LIMIT_ENABLED", True)


@dataclass(frozen=True)
class RateLimitPolicy:
    key: str
    max_requests: int
    window_sec: int


@dataclass
class _Window:
    count: int
    reset_at: float


class _InMemoryRateLimiter:
    """
    固定窗口计数：窗口到期后计数清零。
    """

    def __init__(self, *, gc_interval: float = 60.0) -> None:
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()
        self._gc_interval = gc_interval
        self._next_gc_at = time.monotonic() + gc_interval

    def _collect(self, now: float) -> None:
        if now < self._next_gc_at:
            return
        self._next_gc_at = now + self._gc_interval
        for bucket in [b for b, w in self._windows.items() if w.reset_at <= now]:
            del self._windows[bucket]

    def hit(self, *, bucket: str, policy: RateLimitPolicy) -> tuple[bool, int, int]:
        """
        记一次请求，返回 (是否放行, 剩余次数, 距窗口重置的秒数)。
        """
        now = time.monotonic()
        with self._lock:
            self._collect(now)
            window = self._windows.get(bucket)
            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + policy.window_sec)
                self._windows[bucket] = window
            window.count += 1
            return (
                window.count <= policy.max_requests,
                max(policy.max_requests - window.count, 0),
                max(int(window.reset_at - now), 0),
            )


def _default_policies() -> tuple[RateLimitPolicy, dict[str, RateLimitPolicy]]:
    default = RateLimitPolicy(
        key="global",
        max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 100),
        window_sec=_env_int("RATE_LIMIT_WINDOW_SEC", 15 * 60),
    )
    # 打包接口要读写磁盘，单独一个更紧的 bucket
    by_prefix = {
        "/api/v1/zip/create-zip": RateLimitPolicy(
            key="zip_create",
            max_requests=_env_int("RATE_LIMIT_ZIP_CREATE_MAX", 30),
            window_sec=_env_int("RATE_LIMIT_ZIP_CREATE_WINDOW_SEC", 60),
        ),
    }
    return default, by_prefix


def _client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client and request.client.host else "unknown"


def _limit_headers(policy: RateLimitPolicy, remaining: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(policy.max_requests),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Window": str(policy.window_sec),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    按 IP 的内存限流（默认每 15 分钟 100 次）。

    中文注释: 计数只在当前进程内有效，多实例部署时各实例分别计数。
    """

    def __init__(self, app) -> None:  # type: ignore[override]
        super().__init__(app)
        self._limiter = _InMemoryRateLimiter()
        self._default, self._by_prefix = _default_policies()

    def _policy(self, path: str) -> RateLimitPolicy:
        return next(
            (policy for prefix, policy in self._by_prefix.items() if path.startswith(prefix)),
            self._default,
        )

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method.upper() == "OPTIONS" or not is_rate_limit_enabled():
            return await call_next(request)

        policy = self._policy(request.url.path)
        ip = _client_ip(request)
        allowed, remaining, retry_after = self._limiter.hit(bucket=f"{policy.key}:{ip}", policy=policy)
        if not allowed:
            logger.warning(
                "Rate limit exceeded: path=%s ip=%s bucket=%s retry_after=%ss",
                request.url.path,
                ip,
                policy.key,
                retry_after,
            )
            return JSONResponse(
                status_code=429,
                content={"success": False, "message": "Too many requests", "retry_after": retry_after},
                headers={"Retry-After": str(retry_after), **_limit_headers(policy, 0)},
            )

        response = await call_next(request)
        response.headers.update(_limit_headers(policy, remaining))
        return response
