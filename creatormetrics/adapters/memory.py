"""In-memory collaborators for demos and tests."""

import threading
from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..models import DailyMetric, RawEvent


class InMemoryMetricStore:
    """Dict-backed metric store with the same replace-by-key semantics as the SQL table."""

    def __init__(self):
        self._rows: Dict[Tuple[str, str, str, date], DailyMetric] = {}
        self._lock = threading.Lock()

    def upsert_daily_metrics(self, metrics: Iterable[DailyMetric]) -> int:
        written = 0
        with self._lock:
            for metric in metrics:
                self._rows[metric.key] = metric
                written += 1
        return written

    def fetch_daily_metrics(
        self,
        tenant_id: str,
        from_day: date,
        to_day: date,
        content_type: Optional[str] = None,
    ) -> Sequence[DailyMetric]:
        with self._lock:
            rows = [
                row
                for row in self._rows.values()
                if row.tenant_id == tenant_id
                and from_day <= row.day <= to_day
                and (content_type is None or row.content_type == content_type)
            ]
        return sorted(rows, key=lambda row: (row.day, row.content_type, row.content_id))

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryEventSource:
    def __init__(self, events: Iterable[RawEvent] = ()):
        self.events: List[RawEvent] = list(events)

    def add(self, *events: RawEvent) -> None:
        self.events.extend(events)

    def query_events(
        self,
        start: datetime,
        end: datetime,
        content_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Sequence[RawEvent]:
        return [
            event
            for event in self.events
            if start <= event.timestamp <= end
            and (content_type is None or event.content_type == content_type)
            and (tenant_id is None or event.tenant_id == tenant_id)
        ]


class InMemoryContentOwnership:
    def __init__(self, owners: Optional[Mapping[Tuple[str, str], str]] = None):
        self.owners: Dict[Tuple[str, str], str] = dict(owners or {})

    def find_owner_tenant(self, content_type: str, content_id: str) -> Optional[str]:
        return self.owners.get((content_type, content_id))


class InMemorySubscriptionDirectory:
    def __init__(self, subscriptions: Optional[Mapping[str, Tuple[str, str]]] = None):
        # tenant_id -> (plan, status)
        self.subscriptions: Dict[str, Tuple[str, str]] = dict(subscriptions or {})

    def get_plan(self, tenant_id: str) -> Optional[str]:
        entry = self.subscriptions.get(tenant_id)
        return entry[0] if entry else None

    def list_eligible_tenants(self, statuses: Sequence[str]) -> Sequence[str]:
        return sorted(tenant for tenant, (_, status) in self.subscriptions.items() if status in statuses)
