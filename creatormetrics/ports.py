"""Port definitions for the collaborators the engine reads from and writes to."""

from datetime import date, datetime
from typing import Iterable, Optional, Protocol, Sequence

from .models import DailyMetric, RawEvent


class RawEventSource(Protocol):
    """Read-only access to the raw interaction stream."""

    def query_events(
        self,
        start: datetime,
        end: datetime,
        content_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Sequence[RawEvent]:
        """Return events with start <= timestamp <= end."""


class ContentOwnership(Protocol):
    """Resolves which tenant created a piece of content."""

    def find_owner_tenant(self, content_type: str, content_id: str) -> Optional[str]:
        """Return the owning tenant id, or None when the content is unknown."""


class SubscriptionDirectory(Protocol):
    """Plan and subscription status lookups."""

    def get_plan(self, tenant_id: str) -> Optional[str]:
        """Return the tenant's plan name, or None without a subscription."""

    def list_eligible_tenants(self, statuses: Sequence[str]) -> Sequence[str]:
        """Return ids of tenants whose subscription status is in statuses."""


class MetricStore(Protocol):
    """Durable table of daily per-content snapshots."""

    def upsert_daily_metrics(self, metrics: Iterable[DailyMetric]) -> int:
        """Replace-or-insert every metric by key and return the number written."""

    def fetch_daily_metrics(
        self,
        tenant_id: str,
        from_day: date,
        to_day: date,
        content_type: Optional[str] = None,
    ) -> Sequence[DailyMetric]:
        """Return the tenant's snapshots with from_day <= day <= to_day."""
