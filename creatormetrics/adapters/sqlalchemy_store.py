"""SQLAlchemy metric store: the durable daily_metrics table."""

from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..models import DailyMetric

_METRIC_COLUMNS = (
    "views",
    "starts",
    "completes",
    "likes",
    "shares",
    "downloads",
    "bookmarks",
    "ratings_count",
    "unique_users",
    "watch_time",
)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS daily_metrics (
        tenant_id VARCHAR(64) NOT NULL,
        content_type VARCHAR(32) NOT NULL,
        content_id VARCHAR(128) NOT NULL,
        day DATE NOT NULL,
        views INTEGER NOT NULL DEFAULT 0,
        starts INTEGER NOT NULL DEFAULT 0,
        completes INTEGER NOT NULL DEFAULT 0,
        likes INTEGER NOT NULL DEFAULT 0,
        shares INTEGER NOT NULL DEFAULT 0,
        downloads INTEGER NOT NULL DEFAULT 0,
        bookmarks INTEGER NOT NULL DEFAULT 0,
        ratings_count INTEGER NOT NULL DEFAULT 0,
        unique_users INTEGER NOT NULL DEFAULT 0,
        watch_time DOUBLE PRECISION NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_daily_metrics_key
    ON daily_metrics (tenant_id, content_type, content_id, day)
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_daily_metrics_tenant_day
    ON daily_metrics (tenant_id, day)
    """,
)

_UPSERT_SQL = """
    INSERT INTO daily_metrics (
        tenant_id, content_type, content_id, day,
        {columns}
    ) VALUES (
        :tenant_id, :content_type, :content_id, :day,
        {params}
    )
    ON CONFLICT (tenant_id, content_type, content_id, day) DO UPDATE SET
        {assignments}
""".format(
    columns=", ".join(_METRIC_COLUMNS),
    params=", ".join(f":{name}" for name in _METRIC_COLUMNS),
    assignments=", ".join(f"{name} = excluded.{name}" for name in _METRIC_COLUMNS),
)


class SQLAlchemyMetricStore:
    """Persists snapshots with full-replace upserts keyed by (tenant, type, content, day)."""

    def __init__(self, db: Session):
        self.db = db

    def create_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            self.db.execute(text(statement))
        self.db.commit()

    def upsert_daily_metrics(self, metrics: Iterable[DailyMetric]) -> int:
        params = [_to_params(metric) for metric in metrics]
        if not params:
            return 0
        try:
            self.db.execute(text(_UPSERT_SQL), params)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return len(params)

    def fetch_daily_metrics(
        self,
        tenant_id: str,
        from_day: date,
        to_day: date,
        content_type: Optional[str] = None,
    ) -> Sequence[DailyMetric]:
        query = """
            SELECT tenant_id, content_type, content_id, day,
                   views, starts, completes, likes, shares, downloads,
                   bookmarks, ratings_count, unique_users, watch_time
            FROM daily_metrics
            WHERE tenant_id = :tenant_id
              AND day >= :from_day AND day <= :to_day
        """
        params = {
            "tenant_id": tenant_id,
            "from_day": from_day.isoformat(),
            "to_day": to_day.isoformat(),
        }
        if content_type is not None:
            query += " AND content_type = :content_type"
            params["content_type"] = content_type
        query += " ORDER BY day, content_type, content_id"

        rows = self.db.execute(text(query), params).fetchall()
        return [
            DailyMetric(
                tenant_id=str(row.tenant_id),
                content_type=row.content_type,
                content_id=str(row.content_id),
                day=_as_date(row.day),
                views=int(row.views or 0),
                starts=int(row.starts or 0),
                completes=int(row.completes or 0),
                likes=int(row.likes or 0),
                shares=int(row.shares or 0),
                downloads=int(row.downloads or 0),
                bookmarks=int(row.bookmarks or 0),
                ratings_count=int(row.ratings_count or 0),
                unique_users=int(row.unique_users or 0),
                watch_time=float(row.watch_time or 0),
            )
            for row in rows
        ]


def _to_params(metric: DailyMetric) -> dict:
    params = {
        "tenant_id": metric.tenant_id,
        "content_type": metric.content_type,
        "content_id": metric.content_id,
        "day": metric.day.isoformat(),
    }
    for name in _METRIC_COLUMNS:
        params[name] = getattr(metric, name)
    return params


def _as_date(raw) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])
