"""Daily rollup: recompute per-content metric snapshots from raw events."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import RollupError
from .models import (
    ACTION_COUNTERS,
    ContentType,
    BackfillResult,
    DailyMetric,
    FunnelRow,
    RawEvent,
    RollupResult,
)
from .ports import ContentOwnership, MetricStore, RawEventSource

logger = logging.getLogger(__name__)

MAX_BACKFILL_DAYS = 365

# Metadata key identifying the funnel step for each funnel content type.
FUNNEL_STEP_KEYS = {
    ContentType.COURSE.value: "chapterId",
    ContentType.CHALLENGE.value: "taskId",
}

DayLike = Union[date, datetime]


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(value: DayLike) -> date:
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


def day_bounds(value: DayLike) -> Tuple[datetime, datetime]:
    """UTC calendar day containing value, as [00:00:00.000, 23:59:59.999]."""
    day = utc_day(value)
    start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def group_by_action_type(events: Iterable[RawEvent]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for event in events:
        counts[event.action_type] = counts.get(event.action_type, 0) + 1
    return counts


def compute_daily_metrics(tenant_id: str, day: DayLike, events: Iterable[RawEvent]) -> List[DailyMetric]:
    """Build one snapshot per (content_type, content_id) found in events.

    Events are assumed to already belong to the tenant and the day.
    """
    snapshot_day = utc_day(day)
    grouped = _group_by_content(events)
    return [
        _build_metric(tenant_id, snapshot_day, content_type, content_id, content_events)
        for (content_type, content_id), content_events in sorted(grouped.items())
    ]


def compute_funnel(events: Iterable[RawEvent], step_key: str) -> List[FunnelRow]:
    """Group events carrying metadata[step_key] into per-step funnel rows."""
    steps: Dict[Tuple[str, str], Dict[str, int]] = {}
    for event in events:
        step_id = (event.metadata or {}).get(step_key)
        if step_id is None or step_id == "":
            continue
        bucket = steps.setdefault((str(event.content_id), str(step_id)), {"view": 0, "start": 0, "complete": 0})
        if event.action_type in bucket:
            bucket[event.action_type] += 1

    return [
        FunnelRow(
            content_id=content_id,
            step_id=step_id,
            views=counts["view"],
            starts=counts["start"],
            completes=counts["complete"],
            completion_rate=completion_rate(counts["complete"], counts["start"]),
        )
        for (content_id, step_id), counts in sorted(steps.items())
    ]


def completion_rate(completes: float, starts: float) -> float:
    if starts <= 0:
        return 0.0
    return min(max(completes / starts, 0.0), 1.0)


def _group_by_content(events: Iterable[RawEvent]) -> Dict[Tuple[str, str], List[RawEvent]]:
    grouped: Dict[Tuple[str, str], List[RawEvent]] = {}
    for event in events:
        key = (str(event.content_type), str(event.content_id))
        grouped.setdefault(key, []).append(event)
    return grouped


def _build_metric(
    tenant_id: str,
    day: date,
    content_type: str,
    content_id: str,
    events: Sequence[RawEvent],
) -> DailyMetric:
    counters = {name: 0 for name in ACTION_COUNTERS.values()}
    users = set()
    watch_time = 0.0
    for event in events:
        counter = ACTION_COUNTERS.get(event.action_type)
        if counter is not None:
            counters[counter] += 1
        if event.user_id is not None:
            users.add(str(event.user_id))
        watch_time += _watch_time(event)

    return DailyMetric(
        tenant_id=tenant_id,
        content_type=content_type,
        content_id=content_id,
        day=day,
        unique_users=len(users),
        watch_time=watch_time,
        **counters,
    )


def _watch_time(event: RawEvent) -> float:
    raw = (event.metadata or {}).get("watchTime")
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if value > 0 else 0.0


class Aggregator:
    """Recomputes and persists a tenant's snapshots for one UTC day at a time."""

    def __init__(
        self,
        events: RawEventSource,
        ownership: ContentOwnership,
        store: MetricStore,
        cache=None,
    ):
        self.events = events
        self.ownership = ownership
        self.store = store
        self.cache = cache

    def rollup_day(self, tenant_id: str, day: DayLike) -> RollupResult:
        start, end = day_bounds(day)
        try:
            day_events = self.events.query_events(start, end)
        except Exception as exc:
            raise RollupError(tenant_id, start.date(), str(exc)) from exc

        owned, skipped = self._join_ownership(tenant_id, day_events)

        metrics: List[DailyMetric] = []
        for key, content_events in _group_by_content(owned).items():
            try:
                metrics.append(_build_metric(tenant_id, start.date(), key[0], key[1], content_events))
            except Exception:
                skipped += 1
                logger.warning("Metric computation failed for %s/%s, skipping", key[0], key[1], exc_info=True)

        try:
            updated = self.store.upsert_daily_metrics(metrics) if metrics else 0
        except Exception as exc:
            raise RollupError(tenant_id, start.date(), str(exc)) from exc
        if self.cache is not None:
            self.cache.clear()

        chapter_funnel = compute_funnel(
            (event for event in owned if event.content_type == ContentType.COURSE.value),
            FUNNEL_STEP_KEYS[ContentType.COURSE.value],
        )
        logger.info(
            "Rollup for tenant %s on %s: %d updated, %d skipped",
            tenant_id,
            start.date().isoformat(),
            updated,
            skipped,
        )
        return RollupResult(
            tenant_id=tenant_id,
            day=start.date(),
            updated=updated,
            skipped=skipped,
            chapter_funnel=chapter_funnel,
        )

    def backfill(self, tenant_id: str, days: int, today: Optional[DayLike] = None) -> BackfillResult:
        """Roll up each of the last ``days`` UTC days, oldest first.

        Days are committed one by one; a failed day is logged and the loop
        moves on. Calling backfill again is the recovery path.
        """
        days = max(1, min(MAX_BACKFILL_DAYS, int(days)))
        last_day = utc_day(today) if today is not None else datetime.now(timezone.utc).date()
        updated = 0
        failed: List[date] = []
        for offset in range(days - 1, -1, -1):
            day = last_day - timedelta(days=offset)
            try:
                updated += self.rollup_day(tenant_id, day).updated
            except RollupError:
                logger.exception("Backfill day %s failed for tenant %s", day.isoformat(), tenant_id)
                failed.append(day)
        logger.info("Backfill for tenant %s: %d days, %d updated", tenant_id, days, updated)
        return BackfillResult(tenant_id=tenant_id, days=days, updated=updated, failed_days=failed)

    def owned_events(self, tenant_id: str, events: Iterable[RawEvent]) -> List[RawEvent]:
        """Keep events whose content is owned by tenant_id; unresolvable content is dropped."""
        owned, _ = self._join_ownership(tenant_id, events)
        return owned

    def _join_ownership(self, tenant_id: str, events: Iterable[RawEvent]) -> Tuple[List[RawEvent], int]:
        owned: List[RawEvent] = []
        failed = 0
        for (content_type, content_id), content_events in _group_by_content(events).items():
            try:
                owner = self.ownership.find_owner_tenant(content_type, content_id)
            except Exception:
                failed += 1
                logger.warning("Ownership lookup failed for %s/%s, skipping", content_type, content_id, exc_info=True)
                continue
            if owner is not None and str(owner) == str(tenant_id):
                owned.extend(content_events)
        return owned, failed
