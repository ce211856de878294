from datetime import date, datetime, timedelta, timezone

import pytest

from creatormetrics.adapters import InMemoryContentOwnership, InMemoryEventSource, InMemoryMetricStore
from creatormetrics.cache import QueryCache
from creatormetrics.errors import RollupError
from creatormetrics.rollup import (
    Aggregator,
    compute_daily_metrics,
    compute_funnel,
    day_bounds,
    group_by_action_type,
)
from tests.helpers import DAY, BrokenEventSource, ExplodingOwnership, FakeClock, event


def _aggregator(events, owners=None, cache=None):
    source = InMemoryEventSource(events)
    store = InMemoryMetricStore()
    aggregator = Aggregator(
        source,
        InMemoryContentOwnership(owners or {("course", "C"): "T"}),
        store,
        cache=cache,
    )
    return aggregator, source, store


def test_day_bounds_cover_the_whole_utc_day():
    start, end = day_bounds(datetime(2026, 3, 10, 17, 45, tzinfo=timezone.utc))

    assert start == datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 10, 23, 59, 59, 999000, tzinfo=timezone.utc)


def test_day_bounds_convert_offsets_and_naive_values_to_utc():
    plus_two = timezone(timedelta(hours=2))
    start, _ = day_bounds(datetime(2026, 3, 11, 1, 0, tzinfo=plus_two))
    naive_start, _ = day_bounds(datetime(2026, 3, 10, 23, 0))

    assert start.date() == date(2026, 3, 10)
    assert naive_start.date() == date(2026, 3, 10)


def test_compute_daily_metrics_counts_each_action_and_distinct_users():
    events = [
        event("view", content_id="C", user="a"),
        event("view", content_id="C", user="b"),
        event("view", content_id="C", user="a"),
        event("complete", content_id="C", user="b"),
        event("like", content_id="C", user="c"),
        event("rate", content_id="C", user="c"),
        event("comment", content_id="C", user="d"),
    ]

    [metric] = compute_daily_metrics("T", DAY, events)

    assert metric.key == ("T", "course", "C", date(2026, 3, 10))
    assert metric.views == 3
    assert metric.completes == 1
    assert metric.starts == 0
    assert metric.likes == 1
    assert metric.ratings_count == 1
    assert metric.unique_users == 4


def test_compute_daily_metrics_sums_numeric_watch_time_only():
    events = [
        event("view", content_id="C", watchTime=120),
        event("view", content_id="C", watchTime="30"),
        event("view", content_id="C", watchTime="n/a"),
        event("view", content_id="C", watchTime=-5),
    ]

    [metric] = compute_daily_metrics("T", DAY, events)

    assert metric.watch_time == 150


def test_compute_funnel_groups_by_step_and_never_divides_by_zero():
    events = [
        event("start", content_id="C", chapterId="ch1"),
        event("start", content_id="C", chapterId="ch1"),
        event("complete", content_id="C", chapterId="ch1"),
        event("view", content_id="C", chapterId="ch2"),
        event("view", content_id="C"),
    ]

    funnel = compute_funnel(events, "chapterId")

    assert [(row.step_id, row.views, row.starts, row.completes) for row in funnel] == [
        ("ch1", 0, 2, 1),
        ("ch2", 1, 0, 0),
    ]
    assert funnel[0].completion_rate == 0.5
    assert funnel[1].completion_rate == 0


def test_funnel_completion_rate_is_bounded_when_completes_exceed_starts():
    events = [event("complete", content_id="C", taskId="t1")] * 3 + [event("start", content_id="C", taskId="t1")]

    [row] = compute_funnel(events, "taskId")

    assert 0 <= row.completion_rate <= 1


def test_group_by_action_type():
    events = [event("view"), event("view"), event("share")]

    assert group_by_action_type(events) == {"view": 2, "share": 1}


def test_rollup_three_views_one_complete_scenario():
    aggregator, _, store = _aggregator(
        [event("view", content_id="C")] * 3 + [event("complete", content_id="C")]
    )

    result = aggregator.rollup_day("T", DAY)
    [metric] = store.fetch_daily_metrics("T", DAY.date(), DAY.date())

    assert result.updated == 1
    assert (metric.views, metric.completes, metric.starts) == (3, 1, 0)
    assert metric.key == ("T", "course", "C", DAY.date())


def test_rollup_is_idempotent_without_new_events():
    aggregator, _, store = _aggregator([event("view", content_id="C", user=f"u{i}") for i in range(4)])

    aggregator.rollup_day("T", DAY)
    first = store.fetch_daily_metrics("T", DAY.date(), DAY.date())
    aggregator.rollup_day("T", DAY)
    second = store.fetch_daily_metrics("T", DAY.date(), DAY.date())

    assert first == second
    assert len(store) == 1


def test_rerun_recomputes_instead_of_incrementing():
    aggregator, source, store = _aggregator([event("view", content_id="C")] * 3)

    aggregator.rollup_day("T", DAY)
    source.add(event("view", content_id="C"), event("view", content_id="C"))
    aggregator.rollup_day("T", DAY)

    [metric] = store.fetch_daily_metrics("T", DAY.date(), DAY.date())
    assert metric.views == 5


def test_rollup_only_counts_events_inside_the_utc_day():
    aggregator, _, store = _aggregator(
        [
            event("view", content_id="C", at=DAY),
            event("view", content_id="C", at=DAY.replace(hour=23, minute=59, second=59)),
            event("view", content_id="C", at=DAY - timedelta(microseconds=1)),
            event("view", content_id="C", at=DAY + timedelta(days=1)),
        ]
    )

    aggregator.rollup_day("T", DAY.replace(hour=9))

    [metric] = store.fetch_daily_metrics("T", DAY.date(), DAY.date())
    assert metric.views == 2


def test_rollup_ignores_content_owned_by_other_or_no_tenant():
    aggregator, _, store = _aggregator(
        [
            event("view", content_id="C"),
            event("view", content_id="other"),
            event("view", content_id="orphan"),
        ],
        owners={("course", "C"): "T", ("course", "other"): "U"},
    )

    result = aggregator.rollup_day("T", DAY)

    assert result.updated == 1
    assert [m.content_id for m in store.fetch_daily_metrics("T", DAY.date(), DAY.date())] == ["C"]
    assert store.fetch_daily_metrics("U", DAY.date(), DAY.date()) == []


def test_rollup_skips_items_whose_ownership_lookup_fails():
    source = InMemoryEventSource([event("view", content_id="C"), event("view", content_id="flaky")])
    store = InMemoryMetricStore()
    ownership = ExplodingOwnership({("course", "C"): "T", ("course", "flaky"): "T"}, failing_ids={"flaky"})

    result = Aggregator(source, ownership, store).rollup_day("T", DAY)

    assert result.updated == 1
    assert result.skipped == 1


def test_rollup_raises_when_the_day_cannot_be_read():
    aggregator = Aggregator(BrokenEventSource(), InMemoryContentOwnership(), InMemoryMetricStore())

    with pytest.raises(RollupError) as excinfo:
        aggregator.rollup_day("T", DAY)

    assert excinfo.value.tenant_id == "T"
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_rollup_clears_the_query_cache_after_writing():
    cache = QueryCache(clock=FakeClock())
    cache.set(("U", "a", "b", "overview"), {"stale": True})
    aggregator, _, _ = _aggregator([event("view", content_id="C")], cache=cache)

    aggregator.rollup_day("T", DAY)

    assert len(cache) == 0


def test_rollup_returns_course_chapter_funnel():
    aggregator, _, _ = _aggregator(
        [event("start", content_id="C", chapterId="intro"), event("complete", content_id="C", chapterId="intro")]
    )

    result = aggregator.rollup_day("T", DAY)

    assert [(row.step_id, row.completion_rate) for row in result.chapter_funnel] == [("intro", 1.0)]


def test_backfill_rolls_each_of_the_last_n_days_oldest_first():
    aggregator, _, store = _aggregator(
        [event("view", content_id="C", at=DAY - timedelta(days=offset, hours=-6)) for offset in range(5)]
    )
    rolled = []
    original = aggregator.rollup_day

    def spy(tenant_id, day):
        rolled.append(day)
        return original(tenant_id, day)

    aggregator.rollup_day = spy

    result = aggregator.backfill("T", 3, today=DAY)

    assert rolled == [date(2026, 3, 8), date(2026, 3, 9), date(2026, 3, 10)]
    assert result.updated == 3
    assert result.ok
    assert len(store.fetch_daily_metrics("T", date(2026, 3, 1), date(2026, 3, 31))) == 3


def test_backfill_clamps_day_count():
    aggregator, _, _ = _aggregator([])

    assert aggregator.backfill("T", 0, today=DAY).days == 1
    assert aggregator.backfill("T", 1000, today=DAY).days == 365


class _StoreDownOnce(InMemoryMetricStore):
    def __init__(self):
        super().__init__()
        self.failed = False

    def upsert_daily_metrics(self, metrics):
        if not self.failed:
            self.failed = True
            raise ConnectionError("db down")
        return super().upsert_daily_metrics(metrics)


def test_rollup_wraps_store_write_failures():
    source = InMemoryEventSource([event("view", content_id="C")])
    aggregator = Aggregator(source, InMemoryContentOwnership({("course", "C"): "T"}), _StoreDownOnce())

    with pytest.raises(RollupError) as excinfo:
        aggregator.rollup_day("T", DAY)

    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_backfill_records_a_failed_write_and_keeps_going():
    store = _StoreDownOnce()
    source = InMemoryEventSource(
        [event("view", content_id="C", at=DAY - timedelta(days=offset, hours=-6)) for offset in range(3)]
    )
    aggregator = Aggregator(source, InMemoryContentOwnership({("course", "C"): "T"}), store)

    result = aggregator.backfill("T", 3, today=DAY)

    assert result.failed_days == [date(2026, 3, 8)]
    assert result.updated == 2
    assert [m.day for m in store.fetch_daily_metrics("T", date(2026, 3, 1), date(2026, 3, 31))] == [
        date(2026, 3, 9),
        date(2026, 3, 10),
    ]


def test_backfill_continues_past_failed_days():
    aggregator = Aggregator(BrokenEventSource(), InMemoryContentOwnership(), InMemoryMetricStore())

    result = aggregator.backfill("T", 2, today=DAY)

    assert result.failed_days == [date(2026, 3, 9), date(2026, 3, 10)]
    assert not result.ok
