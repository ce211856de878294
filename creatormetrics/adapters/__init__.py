"""Adapters for integrating creatormetrics with storage backends."""

from .memory import (
    InMemoryContentOwnership,
    InMemoryEventSource,
    InMemoryMetricStore,
    InMemorySubscriptionDirectory,
)
from .sqlalchemy_repo import (
    SQLAlchemyContentOwnership,
    SQLAlchemyRawEventSource,
    SQLAlchemySubscriptionDirectory,
)
from .sqlalchemy_store import SQLAlchemyMetricStore

__all__ = [
    "InMemoryContentOwnership",
    "InMemoryEventSource",
    "InMemoryMetricStore",
    "InMemorySubscriptionDirectory",
    "SQLAlchemyContentOwnership",
    "SQLAlchemyMetricStore",
    "SQLAlchemyRawEventSource",
    "SQLAlchemySubscriptionDirectory",
]
