"""Rollup demo: FastAPI backend over seeded in-memory creator data."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from random import Random
from typing import Optional

from fastapi import FastAPI, HTTPException

from creatormetrics import AnalyticsService, RollupScheduler, load_config
from creatormetrics.adapters import (
    InMemoryContentOwnership,
    InMemoryEventSource,
    InMemoryMetricStore,
    InMemorySubscriptionDirectory,
)
from creatormetrics.errors import CreatorMetricsError
from creatormetrics.models import RawEvent

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

RNG = Random(42)
CONFIG = load_config()

CONTENT = {
    ("course", "course-python"): "creator-pro",
    ("course", "course-sql"): "creator-pro",
    ("challenge", "challenge-30d"): "creator-pro",
    ("post", "post-launch"): "creator-starter",
    ("product", "ebook-1"): "creator-starter",
}
SUBSCRIPTIONS = {
    "creator-pro": ("pro", "active"),
    "creator-starter": ("starter", "trialing"),
}


def _build_demo_events() -> list:
    now = datetime.now(timezone.utc)
    actions = ["view", "view", "view", "start", "complete", "like", "share", "bookmark", "rate"]
    devices = [("desktop", "macOS", "Safari"), ("mobile", "iOS", "Safari"), ("desktop", "Windows", "Chrome")]
    referrers = ["https://google.com", "https://twitter.com", None]

    events = []
    for idx in range(1500):
        content_type, content_id = RNG.choice(sorted(CONTENT))
        device, os_name, browser = RNG.choice(devices)
        metadata = {
            "device": device,
            "os": os_name,
            "browser": browser,
            "referrer": RNG.choice(referrers),
            "watchTime": RNG.randint(0, 600),
        }
        if content_type == "course":
            metadata["chapterId"] = f"ch-{RNG.randint(1, 4)}"
        if content_type == "challenge":
            metadata["taskId"] = f"task-{RNG.randint(1, 3)}"
        events.append(
            RawEvent(
                content_type=content_type,
                content_id=content_id,
                action_type=RNG.choice(actions),
                user_id=f"user-{RNG.randint(1, 120)}",
                timestamp=now - timedelta(minutes=idx * 25),
                metadata=metadata,
            )
        )
    return events


service = AnalyticsService(
    events=InMemoryEventSource(_build_demo_events()),
    ownership=InMemoryContentOwnership(CONTENT),
    store=InMemoryMetricStore(),
    subscriptions=InMemorySubscriptionDirectory(SUBSCRIPTIONS),
    config=CONFIG,
)
scheduler = RollupScheduler(service.aggregator, service.subscriptions, CONFIG.scheduler)


@asynccontextmanager
async def lifespan(_: FastAPI):
    for tenant_id in SUBSCRIPTIONS:
        service.backfill_for_creator(tenant_id, days=30)
    scheduler.start()
    yield
    scheduler.stop()


app = FastAPI(title="creatormetrics Rollup Demo", version="0.1.0", lifespan=lifespan)


def _guard(call):
    try:
        return call()
    except CreatorMetricsError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "scheduler": scheduler.get_stats()}


@app.get("/api/{tenant_id}/overview")
def overview(tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    return _guard(lambda: service.get_overview(tenant_id, start, end))


@app.get("/api/{tenant_id}/content/{scope}")
def by_content_type(
    tenant_id: str, scope: str, start: Optional[datetime] = None, end: Optional[datetime] = None
) -> dict:
    return _guard(lambda: service.get_by_content_type(tenant_id, scope, start, end).to_dict())


@app.get("/api/{tenant_id}/content/{scope}/{content_id}")
def content_trend(
    tenant_id: str,
    scope: str,
    content_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    return _guard(lambda: service.get_content_trend(tenant_id, scope, content_id, start, end))


@app.get("/api/{tenant_id}/devices")
def devices(tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    return _guard(lambda: service.get_devices(tenant_id, start, end))


@app.get("/api/{tenant_id}/referrers")
def referrers(tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    return _guard(lambda: service.get_referrers(tenant_id, start, end))


@app.get("/api/{tenant_id}/export")
def export(tenant_id: str, scope: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    return _guard(lambda: service.export_csv(tenant_id, scope, start, end).to_dict())


@app.post("/api/{tenant_id}/backfill")
def backfill(tenant_id: str, days: int = 90) -> dict:
    return service.backfill_for_creator(tenant_id, days).to_dict()
