import pytest

import scheduler
from config import get_settings
from rate_limit import RouteClass, get_limiter


@pytest.fixture
def manager(monkeypatch):
    monkeypatch.setenv("FINTRACK_SCHEDULER_ENABLED", "0")
    get_settings.cache_clear()
    get_limiter.cache_clear()
    started = []
    monkeypatch.setattr(scheduler, "run_recurring", lambda source: started.append(source))
    manager = scheduler.SchedulerManager()
    manager.started_runs = started
    yield manager
    manager.stop()
    get_settings.cache_clear()
    get_limiter.cache_clear()


def _job_ids(manager: scheduler.SchedulerManager) -> list[str]:
    return sorted(job.id for job in manager.scheduler.get_jobs())


def test_rate_limit_sweep_runs_with_recurring_jobs_disabled(manager):
    manager.start()
    assert manager.scheduler.running
    assert _job_ids(manager) == ["rate_limit_sweep"]
    assert manager.started_runs == []


def test_recurring_jobs_registered_when_enabled(manager, monkeypatch):
    monkeypatch.setattr(manager.settings, "scheduler_enabled", True)
    manager.start()
    assert _job_ids(manager) == [
        "rate_limit_sweep",
        "recurring_daily",
        "recurring_hourly_safety",
    ]
    assert manager.started_runs == ["startup"]


def test_sweep_job_drops_expired_windows(manager):
    limiter = get_limiter()
    limiter.check("user-a", "/api/categories", RouteClass.read)
    assert len(limiter) == 1
    limiter.clock = lambda: 10_000_000_000.0
    manager._sweep_rate_limits()
    assert len(limiter) == 0
