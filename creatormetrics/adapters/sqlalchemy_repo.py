"""SQLAlchemy adapters for the tracking, content and subscription tables."""

import json
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..models import RawEvent

# Content type -> table holding that content with its creator_id.
DEFAULT_CONTENT_TABLES: Mapping[str, str] = {
    "course": "courses",
    "challenge": "challenges",
    "session": "sessions",
    "event": "events",
    "product": "products",
    "post": "posts",
}


class SQLAlchemyRawEventSource:
    """Reads raw interactions from the tracking_actions table."""

    def __init__(self, db: Session, table: str = "tracking_actions"):
        self.db = db
        self.table = table

    def query_events(
        self,
        start: datetime,
        end: datetime,
        content_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Sequence[RawEvent]:
        query = f"""
            SELECT tenant_id, content_type, content_id, action_type, user_id, timestamp, metadata
            FROM {self.table}
            WHERE timestamp >= :start AND timestamp <= :end
        """
        params: Dict = {"start": start, "end": end}
        if content_type is not None:
            query += " AND content_type = :content_type"
            params["content_type"] = content_type
        if tenant_id is not None:
            query += " AND tenant_id = :tenant_id"
            params["tenant_id"] = tenant_id

        rows = self.db.execute(text(query), params).fetchall()
        return [
            RawEvent(
                tenant_id=str(row.tenant_id) if row.tenant_id is not None else None,
                content_type=row.content_type,
                content_id=str(row.content_id),
                action_type=row.action_type,
                user_id=str(row.user_id) if row.user_id is not None else None,
                timestamp=_parse_timestamp(row.timestamp),
                metadata=_parse_metadata(row._mapping["metadata"]),
            )
            for row in rows
        ]


class SQLAlchemyContentOwnership:
    """Looks content up in its per-type table and returns its creator."""

    def __init__(self, db: Session, tables: Optional[Mapping[str, str]] = None):
        self.db = db
        self.tables = dict(tables or DEFAULT_CONTENT_TABLES)

    def find_owner_tenant(self, content_type: str, content_id: str) -> Optional[str]:
        table = self.tables.get(content_type)
        if table is None:
            return None
        row = self.db.execute(
            text(f"SELECT creator_id FROM {table} WHERE id = :content_id"),
            {"content_id": content_id},
        ).fetchone()
        if row is None or row.creator_id is None:
            return None
        return str(row.creator_id)


class SQLAlchemySubscriptionDirectory:
    """Plan and status lookups against the subscriptions table."""

    def __init__(self, db: Session, table: str = "subscriptions"):
        self.db = db
        self.table = table

    def get_plan(self, tenant_id: str) -> Optional[str]:
        row = self.db.execute(
            text(f"SELECT plan FROM {self.table} WHERE creator_id = :tenant_id"),
            {"tenant_id": tenant_id},
        ).fetchone()
        return row.plan if row is not None else None

    def list_eligible_tenants(self, statuses: Sequence[str]) -> Sequence[str]:
        if not statuses:
            return []
        names = [f":status_{index}" for index in range(len(statuses))]
        params = {f"status_{index}": status for index, status in enumerate(statuses)}
        rows = self.db.execute(
            text(
                f"""
                SELECT DISTINCT creator_id
                FROM {self.table}
                WHERE status IN ({", ".join(names)})
                ORDER BY creator_id
                """
            ),
            params,
        ).fetchall()
        return [str(row.creator_id) for row in rows]


def _parse_metadata(raw) -> Dict:
    if raw is None:
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return {}
    if isinstance(raw, dict):
        return raw
    return {}


def _parse_timestamp(raw) -> datetime:
    if isinstance(raw, str):
        raw = datetime.fromisoformat(raw)
    if raw.tzinfo is None:
        return raw.replace(tzinfo=timezone.utc)
    return raw
