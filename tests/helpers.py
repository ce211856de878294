"""Shared test helpers: event factory and scriptable fake collaborators."""

from datetime import datetime, timezone

from creatormetrics.adapters import (
    InMemoryContentOwnership,
    InMemoryEventSource,
    InMemoryMetricStore,
    InMemorySubscriptionDirectory,
)
from creatormetrics.cache import QueryCache
from creatormetrics.models import RawEvent
from creatormetrics.service import AnalyticsService

DAY = datetime(2026, 3, 10, tzinfo=timezone.utc)


def event(action, content_id="c1", content_type="course", user="u1", at=None, **metadata):
    return RawEvent(
        content_type=content_type,
        content_id=content_id,
        action_type=action,
        user_id=user,
        timestamp=at or DAY.replace(hour=12),
        metadata=metadata,
    )


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ExplodingOwnership:
    """Ownership lookups that fail for selected content ids."""

    def __init__(self, owners, failing_ids):
        self.owners = owners
        self.failing_ids = set(failing_ids)

    def find_owner_tenant(self, content_type, content_id):
        if content_id in self.failing_ids:
            raise ConnectionError(f"content store unavailable for {content_id}")
        return self.owners.get((content_type, content_id))


class BrokenEventSource:
    def query_events(self, start, end, content_type=None, tenant_id=None):
        raise ConnectionError("tracking store down")


class CountingStore(InMemoryMetricStore):
    def __init__(self):
        super().__init__()
        self.fetch_calls = 0

    def fetch_daily_metrics(self, *args, **kwargs):
        self.fetch_calls += 1
        return super().fetch_daily_metrics(*args, **kwargs)


def build_service(events=(), owners=None, subscriptions=None, clock=None):
    store = CountingStore()
    source = InMemoryEventSource(events)
    cache = QueryCache(clock=clock or FakeClock())
    service = AnalyticsService(
        events=source,
        ownership=InMemoryContentOwnership({("course", "c1"): "T"} if owners is None else owners),
        store=store,
        subscriptions=InMemorySubscriptionDirectory(
            {"T": ("pro", "active")} if subscriptions is None else subscriptions
        ),
        cache=cache,
    )
    return service, source, store
