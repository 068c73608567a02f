import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from config import RateLimit, parse_rate_limit
from rate_limit import RateLimiter, RouteClass, hash_identity, identity_for


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(
        {
            "ai": RateLimit(10, 60),
            "export": RateLimit(5, 60),
            "mutation": RateLimit(30, 60),
            "read": RateLimit(100, 60),
        },
        clock=clock,
    )


def test_sixth_export_in_window_is_rejected():
    clock = FakeClock()
    limiter = _limiter(clock)
    for i in range(5):
        decision = limiter.check("user-a", "/api/export", RouteClass.export)
        assert decision.allowed
        assert decision.remaining == 4 - i

    clock.now += 10
    rejected = limiter.check("user-a", "/api/export", RouteClass.export)
    assert not rejected.allowed
    assert 0 < rejected.retry_after_seconds <= 60
    assert rejected.retry_after_seconds == 50
    headers = rejected.headers()
    assert headers["Retry-After"] == "50"
    assert headers["X-RateLimit-Limit"] == "5"
    assert headers["X-RateLimit-Remaining"] == "0"


def test_counter_resets_once_window_elapses():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.check("user-a", "/api/export", RouteClass.export)

    clock.now += 60
    decision = limiter.check("user-a", "/api/export", RouteClass.export)
    assert decision.allowed
    assert decision.window_start == clock.now
    assert decision.remaining == 4


def test_identities_and_routes_are_counted_separately():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.check("user-a", "/api/export", RouteClass.export)

    assert limiter.check("user-b", "/api/export", RouteClass.export).allowed
    assert limiter.check("user-a", "/api/other-export", RouteClass.export).allowed
    assert not limiter.check("user-a", "/api/export", RouteClass.export).allowed


def test_concurrent_checks_never_exceed_the_limit():
    clock = FakeClock()
    limiter = _limiter(clock)
    barrier = threading.Barrier(20)

    def burst() -> list[bool]:
        barrier.wait()
        return [
            limiter.check("user-a", "/api/export", RouteClass.export).allowed
            for _ in range(5)
        ]

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = [f.result() for f in [pool.submit(burst) for _ in range(20)]]

    allowed = sum(flag for batch in results for flag in batch)
    assert allowed == 5
    assert len(limiter) == 1


def test_retry_after_is_at_least_one_second():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.check("user-a", "/api/export", RouteClass.export)
    clock.now += 59.9
    decision = limiter.check("user-a", "/api/export", RouteClass.export)
    assert decision.retry_after_seconds == 1


def test_sweep_drops_only_expired_windows():
    clock = FakeClock()
    limiter = _limiter(clock)
    limiter.check("user-a", "/api/expenses", RouteClass.read)
    clock.now += 30
    limiter.check("user-b", "/api/expenses", RouteClass.read)
    assert len(limiter) == 2

    clock.now += 31
    assert limiter.sweep() == 1
    assert len(limiter) == 1
    assert limiter.sweep() == 0


def test_identity_prefers_token_then_forwarded_then_real_ip():
    token_identity = identity_for("Bearer secret-token", "1.2.3.4", "5.6.7.8")
    assert token_identity == f"token:{hash_identity('secret-token')}"
    assert "secret-token" not in token_identity
    assert identity_for(None, "1.2.3.4, 10.0.0.1", "5.6.7.8") == "1.2.3.4"
    assert identity_for(None, None, "5.6.7.8") == "5.6.7.8"
    assert identity_for(None, None, None, "testclient") == "testclient"
    assert identity_for(None) == "unknown"


def test_parse_rate_limit():
    assert parse_rate_limit("10/60") == RateLimit(10, 60)
    with pytest.raises(ValueError):
        parse_rate_limit("ten per minute")
    with pytest.raises(ValueError):
        parse_rate_limit("0/60")
