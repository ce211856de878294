"""Application service orchestrating collaborators, the rollup and pure report functions."""

import copy
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional, Tuple

from .analytics import (
    DEVICE_FIELDS,
    REFERRER_FIELDS,
    build_content_report,
    compute_breakdown,
    compute_content_trend,
    compute_overview,
    content_export_rows,
    overview_export_rows,
    shape_overview,
    to_csv,
)
from .cache import QueryCache
from .config import Config
from .errors import InvalidRangeError, UnknownScopeError
from .models import BackfillResult, ContentType, ExportResult, PlanTier, RollupResult
from .ports import ContentOwnership, MetricStore, RawEventSource, SubscriptionDirectory
from .rollup import FUNNEL_STEP_KEYS, Aggregator, compute_funnel, day_bounds, to_utc

logger = logging.getLogger(__name__)

CONTENT_SCOPES = {
    "courses": ContentType.COURSE.value,
    "challenges": ContentType.CHALLENGE.value,
    "sessions": ContentType.SESSION.value,
    "events": ContentType.EVENT.value,
    "products": ContentType.PRODUCT.value,
    "posts": ContentType.POST.value,
}
EXPORT_SCOPES = ("overview",) + tuple(CONTENT_SCOPES)

EXPORT_REFUSAL_MESSAGE = "CSV export available for PRO plan only"


class AnalyticsService:
    """Facade exposing rollups and tenant-scoped reports independent of web frameworks."""

    def __init__(
        self,
        events: RawEventSource,
        ownership: ContentOwnership,
        store: MetricStore,
        subscriptions: SubscriptionDirectory,
        cache: Optional[QueryCache] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or Config()
        self.events = events
        self.store = store
        self.subscriptions = subscriptions
        self.cache = cache if cache is not None else QueryCache(default_ttl=self.config.cache_ttl_seconds)
        self.aggregator = Aggregator(events, ownership, store, cache=self.cache)

    def get_overview(
        self,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        plan: Optional[PlanTier] = None,
    ) -> Dict:
        start, end = self._normalize_period(start_date, end_date)
        if plan is None:
            plan = self._resolve_plan(tenant_id)

        def load() -> Dict:
            rows = self.store.fetch_daily_metrics(tenant_id, start.date(), end.date())
            return compute_overview(rows, top_limit=self.config.reports.top_content_limit)

        full = self._cached(tenant_id, start, end, "overview", load)
        return shape_overview(full, PlanTier.parse(plan))

    def get_by_content_type(
        self,
        tenant_id: str,
        scope: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ):
        content_type = _content_type_for(scope)
        start, end = self._normalize_period(start_date, end_date)

        def load():
            rows = self.store.fetch_daily_metrics(tenant_id, start.date(), end.date(), content_type)
            funnel = None
            if content_type in FUNNEL_STEP_KEYS:
                range_start, range_end = _range_bounds(start, end)
                raw = self.events.query_events(range_start, range_end, content_type=content_type)
                funnel = compute_funnel(
                    self.aggregator.owned_events(tenant_id, raw),
                    FUNNEL_STEP_KEYS[content_type],
                )
            return build_content_report(content_type, rows, funnel)

        return self._cached(tenant_id, start, end, content_type, load)

    def get_content_trend(
        self,
        tenant_id: str,
        scope: str,
        content_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        """Daily trend and range totals for a single content item of the tenant."""
        content_type = _content_type_for(scope)
        start, end = self._normalize_period(start_date, end_date)

        def load() -> Dict:
            rows = self.store.fetch_daily_metrics(tenant_id, start.date(), end.date(), content_type)
            return {"contentType": content_type, **compute_content_trend(rows, str(content_id))}

        return self._cached(tenant_id, start, end, f"{content_type}:{content_id}", load)

    def get_devices(
        self,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = self._normalize_period(start_date, end_date)

        def load() -> Dict:
            return {"rows": compute_breakdown(self._owned_range_events(tenant_id, start, end), DEVICE_FIELDS)}

        return self._cached(tenant_id, start, end, "devices", load)

    def get_referrers(
        self,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        start, end = self._normalize_period(start_date, end_date)

        def load() -> Dict:
            rows = compute_breakdown(
                self._owned_range_events(tenant_id, start, end),
                REFERRER_FIELDS,
                limit=self.config.reports.referrer_limit,
            )
            return {"rows": rows}

        return self._cached(tenant_id, start, end, "referrers", load)

    def export_csv(
        self,
        tenant_id: str,
        scope: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ExportResult:
        """Export a report as CSV for pro tenants.

        ``scope`` is ``overview`` or a content scope, plural or singular
        (``courses`` or ``course``); the filename always uses the plural.
        """
        scope = _export_scope(scope)
        start, end = self._normalize_period(start_date, end_date)

        plan = self._resolve_plan(tenant_id)
        if plan is not PlanTier.PRO:
            logger.info("CSV export refused for tenant %s on plan %s", tenant_id, plan.value)
            return ExportResult(success=False, message=EXPORT_REFUSAL_MESSAGE)

        if scope == "overview":
            overview = self.get_overview(tenant_id, start, end, PlanTier.PRO)
            rows = overview_export_rows(overview)
        else:
            rows = content_export_rows(self.get_by_content_type(tenant_id, scope, start, end))
        return ExportResult(success=True, filename=f"{scope}.csv", csv=to_csv(rows))

    def rollup_day(self, tenant_id: str, day) -> RollupResult:
        return self.aggregator.rollup_day(tenant_id, day)

    def backfill_for_creator(self, tenant_id: str, days: Optional[int] = None) -> BackfillResult:
        if days is None:
            days = self.config.backfill_default_days
        return self.aggregator.backfill(tenant_id, days)

    def _cached(self, tenant_id: str, start: datetime, end: datetime, scope: str, load):
        # Callers get their own copy; the cached value is shared until it expires.
        value = self.cache.get_or_set(QueryCache.make_key(tenant_id, start, end, scope), load)
        return copy.deepcopy(value)

    def _resolve_plan(self, tenant_id: str) -> PlanTier:
        return PlanTier.parse(self.subscriptions.get_plan(tenant_id))

    def _owned_range_events(self, tenant_id: str, start: datetime, end: datetime):
        range_start, range_end = _range_bounds(start, end)
        return self.aggregator.owned_events(tenant_id, self.events.query_events(range_start, range_end))

    def _normalize_period(
        self,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
    ) -> Tuple[datetime, datetime]:
        return _normalize_period(start_date, end_date, self.config.reports.default_range_days)


def _normalize_period(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    default_days: int = 30,
) -> Tuple[datetime, datetime]:
    start_date = _as_datetime(start_date)
    end_date = _as_datetime(end_date)
    if end_date is None:
        end_date = datetime.now(timezone.utc)
    if start_date is None:
        start_date = end_date - timedelta(days=default_days)
    if start_date > end_date:
        raise InvalidRangeError(f"Range start {start_date.isoformat()} is after end {end_date.isoformat()}")
    return start_date, end_date


def _as_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(0, 0), tzinfo=timezone.utc)
    raise InvalidRangeError(f"Expected a datetime, got {type(value).__name__}")


def _range_bounds(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """Whole UTC days covered by [start, end], matching the snapshot range."""
    return day_bounds(start)[0], day_bounds(end)[1]


def _content_type_for(scope: str) -> str:
    if scope in CONTENT_SCOPES:
        return CONTENT_SCOPES[scope]
    if scope in CONTENT_SCOPES.values():
        return scope
    raise UnknownScopeError(scope, CONTENT_SCOPES)


def _export_scope(scope: str) -> str:
    if scope in EXPORT_SCOPES:
        return scope
    for plural, content_type in CONTENT_SCOPES.items():
        if scope == content_type:
            return plural
    raise UnknownScopeError(scope, EXPORT_SCOPES)
