import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: int


def parse_rate_limit(value: str) -> RateLimit:
    try:
        max_raw, window_raw = value.split("/", 1)
        limit = RateLimit(int(max_raw), int(window_raw))
    except ValueError as exc:
        raise ValueError(f"Invalid rate limit {value!r}, expected 'max/seconds'") from exc
    if limit.max_requests <= 0 or limit.window_seconds <= 0:
        raise ValueError(f"Invalid rate limit {value!r}, values must be positive")
    return limit


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        cron_secret: str,
        budget_alert_policy: str,
        rate_limits: dict[str, RateLimit],
        rate_limit_sweep_secs: int,
        recurring_hour: int,
        recurring_minute: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.cron_secret = cron_secret
        self.budget_alert_policy = budget_alert_policy
        self.rate_limits = rate_limits
        self.rate_limit_sweep_secs = rate_limit_sweep_secs
        self.recurring_hour = recurring_hour
        self.recurring_minute = recurring_minute
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


DEFAULT_RATE_LIMITS = {
    "ai": "10/60",
    "export": "5/60",
    "mutation": "30/60",
    "read": "100/60",
}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "UTC")
    cron_secret = os.getenv("FINTRACK_CRON_SECRET", "")
    budget_alert_policy = os.getenv("FINTRACK_BUDGET_ALERT_POLICY", "on_transition")
    if budget_alert_policy not in ("on_transition", "every_insert"):
        raise ValueError(f"Unsupported budget alert policy: {budget_alert_policy}")
    rate_limits = {
        route_class: parse_rate_limit(
            os.getenv(f"FINTRACK_RATE_LIMIT_{route_class.upper()}", default)
        )
        for route_class, default in DEFAULT_RATE_LIMITS.items()
    }
    rate_limit_sweep_secs = int(os.getenv("FINTRACK_RATE_LIMIT_SWEEP_SECS", "300"))
    recurring_hour = int(os.getenv("FINTRACK_RECURRING_HOUR", "0"))
    recurring_minute = int(os.getenv("FINTRACK_RECURRING_MINUTE", "5"))
    scheduler_enabled = os.getenv("FINTRACK_SCHEDULER_ENABLED", "1") not in (
        "0",
        "false",
        "no",
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        cron_secret=cron_secret,
        budget_alert_policy=budget_alert_policy,
        rate_limits=rate_limits,
        rate_limit_sweep_secs=rate_limit_sweep_secs,
        recurring_hour=recurring_hour,
        recurring_minute=recurring_minute,
        scheduler_enabled=scheduler_enabled,
    )
