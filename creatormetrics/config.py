"""Configuration management. All settings from environment variables with sensible defaults."""

import logging
import os
from dataclasses import dataclass, field
from typing import Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
    hourly_interval_seconds: int = 3600
    daily_hour: int = 2  # local wall-clock time of the end-of-day run
    daily_minute: int = 15
    eligible_statuses: Tuple[str, ...] = ("active", "trialing")
    tenant_timeout_seconds: int = 0  # 0 = no per-tenant bound


@dataclass(frozen=True)
class ReportConfig:
    default_range_days: int = 30
    top_content_limit: int = 3
    referrer_limit: int = 50


@dataclass(frozen=True)
class Config:
    database_url: str = "sqlite:///creatormetrics.db"
    cache_ttl_seconds: int = 600
    backfill_default_days: int = 90
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    reports: ReportConfig = field(default_factory=ReportConfig)


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using default %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%d is below %d, using default %d", name, value, minimum, default)
        return default
    return value


def _list_env(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    values = tuple(part.strip().lower() for part in raw.split(",") if part.strip())
    return values or default


def load_config() -> Config:
    """Build a Config from CREATORMETRICS_* environment variables."""
    return Config(
        database_url=os.getenv("CREATORMETRICS_DATABASE_URL", "sqlite:///creatormetrics.db"),
        cache_ttl_seconds=_int_env("CREATORMETRICS_CACHE_TTL_SECONDS", 600),
        backfill_default_days=_int_env("CREATORMETRICS_BACKFILL_DEFAULT_DAYS", 90, minimum=1),
        scheduler=SchedulerConfig(
            hourly_interval_seconds=_int_env("CREATORMETRICS_HOURLY_INTERVAL_SECONDS", 3600, minimum=1),
            daily_hour=min(_int_env("CREATORMETRICS_DAILY_HOUR", 2), 23),
            daily_minute=min(_int_env("CREATORMETRICS_DAILY_MINUTE", 15), 59),
            eligible_statuses=_list_env("CREATORMETRICS_ELIGIBLE_STATUSES", ("active", "trialing")),
            tenant_timeout_seconds=_int_env("CREATORMETRICS_TENANT_TIMEOUT_SECONDS", 0),
        ),
        reports=ReportConfig(
            default_range_days=_int_env("CREATORMETRICS_DEFAULT_RANGE_DAYS", 30, minimum=1),
            top_content_limit=_int_env("CREATORMETRICS_TOP_CONTENT_LIMIT", 3, minimum=1),
            referrer_limit=_int_env("CREATORMETRICS_REFERRER_LIMIT", 50, minimum=1),
        ),
    )
