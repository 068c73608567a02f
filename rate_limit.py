from __future__ import annotations

import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, Mapping, Optional

from fastapi import HTTPException, Request

from config import RateLimit, get_settings

logger = logging.getLogger(__name__)


class RouteClass(str, Enum):
    ai = "ai"
    export = "export"
    mutation = "mutation"
    read = "read"


@dataclass
class _Window:
    count: int
    window_start: float
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int
    limit: int
    remaining: int
    window_start: float
    reset_at: float

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class RateLimiter:
    def __init__(
        self,
        limits: Mapping[str, RateLimit],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limits = {RouteClass(name): limit for name, limit in limits.items()}
        self.clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}
        self._lock = threading.Lock()

    def check(
        self, identity: str, route: str, route_class: RouteClass
    ) -> RateLimitDecision:
        config = self.limits[RouteClass(route_class)]
        key = (identity, route)
        with self._lock:
            now = self.clock()
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = _Window(
                    count=1,
                    window_start=now,
                    reset_at=now + config.window_seconds,
                )
                self._windows[key] = window
                return self._decision(True, window, config, now)
            if window.count < config.max_requests:
                window.count += 1
                return self._decision(True, window, config, now)
            return self._decision(False, window, config, now)

    @staticmethod
    def _decision(
        allowed: bool, window: _Window, config: RateLimit, now: float
    ) -> RateLimitDecision:
        retry_after = 0
        if not allowed:
            retry_after = max(1, int(math.ceil(window.reset_at - now)))
        return RateLimitDecision(
            allowed=allowed,
            retry_after_seconds=retry_after,
            limit=config.max_requests,
            remaining=max(0, config.max_requests - window.count),
            window_start=window.window_start,
            reset_at=window.reset_at,
        )

    def sweep(self) -> int:
        with self._lock:
            now = self.clock()
            expired = [key for key, w in self._windows.items() if now >= w.reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


def hash_identity(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def identity_for(
    authorization: Optional[str],
    forwarded_for: Optional[str] = None,
    real_ip: Optional[str] = None,
    client_host: Optional[str] = None,
) -> str:
    if authorization:
        token = authorization.removeprefix("Bearer ").strip()
        if token:
            return f"token:{hash_identity(token)}"
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return real_ip or client_host or "unknown"


def identity_from_request(request: Request) -> str:
    return identity_for(
        request.headers.get("authorization"),
        request.headers.get("x-forwarded-for"),
        request.headers.get("x-real-ip"),
        request.client.host if request.client else None,
    )


@lru_cache(maxsize=1)
def get_limiter() -> RateLimiter:
    return RateLimiter(get_settings().rate_limits)


def rate_limited(route_class: RouteClass) -> Callable[[Request], None]:
    def dependency(request: Request) -> None:
        identity = identity_from_request(request)
        decision = get_limiter().check(identity, request.url.path, route_class)
        if decision.allowed:
            return
        logger.warning(
            f"rate_limited: route={request.url.path} class={route_class.value} "
            f"retry_after={decision.retry_after_seconds}"
        )
        raise HTTPException(
            status_code=429,
            detail={
                "error": "Too many requests. Please try again later.",
                "retry_after": decision.retry_after_seconds,
                "window_start": decision.window_start,
                "reset_at": decision.reset_at,
            },
            headers=decision.headers(),
        )

    return dependency
