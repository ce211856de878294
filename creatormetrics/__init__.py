"""creatormetrics - daily content rollups and plan-gated creator reports."""

from .analytics import (
    compute_content_trend,
    compute_overview,
    compute_top_contents,
    compute_totals,
    compute_trend,
    shape_overview,
)
from .cache import QueryCache
from .config import Config, load_config
from .models import ContentType, DailyMetric, PlanTier, RawEvent
from .rollup import Aggregator, compute_daily_metrics, compute_funnel
from .scheduler import RollupScheduler
from .service import AnalyticsService

__all__ = [
    "AnalyticsService",
    "Aggregator",
    "RollupScheduler",
    "QueryCache",
    "Config",
    "load_config",
    "ContentType",
    "DailyMetric",
    "PlanTier",
    "RawEvent",
    "compute_daily_metrics",
    "compute_content_trend",
    "compute_funnel",
    "compute_overview",
    "compute_totals",
    "compute_trend",
    "compute_top_contents",
    "shape_overview",
]

__version__ = "0.1.0"
