"""Core domain models used by the rollup and report engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ContentType(str, Enum):
    COURSE = "course"
    CHALLENGE = "challenge"
    SESSION = "session"
    EVENT = "event"
    PRODUCT = "product"
    POST = "post"


class ActionType(str, Enum):
    VIEW = "view"
    START = "start"
    COMPLETE = "complete"
    LIKE = "like"
    SHARE = "share"
    DOWNLOAD = "download"
    BOOKMARK = "bookmark"
    RATE = "rate"


class PlanTier(str, Enum):
    """Subscription level gating report fields and export."""

    STARTER = "starter"
    GROWTH = "growth"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return _PLAN_ORDER.index(self)

    @classmethod
    def parse(cls, value: Optional[str]) -> "PlanTier":
        """Map a stored plan name to a tier, defaulting to starter."""
        if isinstance(value, PlanTier):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.STARTER


_PLAN_ORDER = [PlanTier.STARTER, PlanTier.GROWTH, PlanTier.PRO]

COUNTER_FIELDS = (
    "views",
    "starts",
    "completes",
    "likes",
    "shares",
    "downloads",
    "bookmarks",
    "ratings_count",
    "watch_time",
)

# Action -> counter attribute on DailyMetric.
ACTION_COUNTERS = {
    ActionType.VIEW.value: "views",
    ActionType.START.value: "starts",
    ActionType.COMPLETE.value: "completes",
    ActionType.LIKE.value: "likes",
    ActionType.SHARE.value: "shares",
    ActionType.DOWNLOAD.value: "downloads",
    ActionType.BOOKMARK.value: "bookmarks",
    ActionType.RATE.value: "ratings_count",
}


@dataclass(frozen=True)
class RawEvent:
    """A single tracked interaction, owned by the tracking collaborator."""

    content_type: str
    content_id: str
    action_type: str
    user_id: Optional[str]
    timestamp: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None


@dataclass(frozen=True)
class DailyMetric:
    """Full recomputation snapshot for one content item on one UTC day."""

    tenant_id: str
    content_type: str
    content_id: str
    day: date
    views: int = 0
    starts: int = 0
    completes: int = 0
    likes: int = 0
    shares: int = 0
    downloads: int = 0
    bookmarks: int = 0
    ratings_count: int = 0
    unique_users: int = 0
    watch_time: float = 0

    @property
    def key(self) -> Tuple[str, str, str, date]:
        return (self.tenant_id, self.content_type, self.content_id, self.day)

    def counters(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in COUNTER_FIELDS}


@dataclass(frozen=True)
class FunnelRow:
    """Per-step view/start/complete counts for a course chapter or challenge task."""

    content_id: str
    step_id: str
    views: int
    starts: int
    completes: int
    completion_rate: float

    def to_dict(self) -> Dict:
        return {
            "contentId": self.content_id,
            "stepId": self.step_id,
            "views": self.views,
            "starts": self.starts,
            "completes": self.completes,
            "completionRate": self.completion_rate,
        }


@dataclass(frozen=True)
class ContentMetrics:
    """Counters for one content item summed over a date range."""

    content_id: str
    views: int = 0
    starts: int = 0
    completes: int = 0
    likes: int = 0
    shares: int = 0
    downloads: int = 0
    bookmarks: int = 0
    ratings_count: int = 0
    watch_time: float = 0
    completion_rate: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "contentId": self.content_id,
            "views": self.views,
            "starts": self.starts,
            "completes": self.completes,
            "likes": self.likes,
            "shares": self.shares,
            "downloads": self.downloads,
            "bookmarks": self.bookmarks,
            "ratingsCount": self.ratings_count,
            "watchTime": self.watch_time,
            "completionRate": self.completion_rate,
        }


@dataclass(frozen=True)
class CourseMetrics:
    rows: List[ContentMetrics]
    chapter_funnel: List[FunnelRow]
    content_type: str = ContentType.COURSE.value

    def to_dict(self) -> Dict:
        return {
            "contentType": self.content_type,
            "byCourse": [row.to_dict() for row in self.rows],
            "chapterFunnel": [row.to_dict() for row in self.chapter_funnel],
        }


@dataclass(frozen=True)
class ChallengeMetrics:
    rows: List[ContentMetrics]
    step_funnel: List[FunnelRow]
    content_type: str = ContentType.CHALLENGE.value

    def to_dict(self) -> Dict:
        return {
            "contentType": self.content_type,
            "byChallenge": [row.to_dict() for row in self.rows],
            "stepFunnel": [row.to_dict() for row in self.step_funnel],
        }


@dataclass(frozen=True)
class SessionMetrics:
    rows: List[ContentMetrics]
    content_type: str = ContentType.SESSION.value

    def to_dict(self) -> Dict:
        return {"contentType": self.content_type, "bySession": [row.to_dict() for row in self.rows]}


@dataclass(frozen=True)
class EventMetrics:
    rows: List[ContentMetrics]
    content_type: str = ContentType.EVENT.value

    def to_dict(self) -> Dict:
        return {"contentType": self.content_type, "byEvent": [row.to_dict() for row in self.rows]}


@dataclass(frozen=True)
class ProductMetrics:
    rows: List[ContentMetrics]
    content_type: str = ContentType.PRODUCT.value

    def to_dict(self) -> Dict:
        return {"contentType": self.content_type, "byProduct": [row.to_dict() for row in self.rows]}


@dataclass(frozen=True)
class PostMetrics:
    rows: List[ContentMetrics]
    content_type: str = ContentType.POST.value

    def to_dict(self) -> Dict:
        return {"contentType": self.content_type, "byPost": [row.to_dict() for row in self.rows]}


@dataclass(frozen=True)
class RollupResult:
    tenant_id: str
    day: date
    updated: int
    skipped: int = 0
    chapter_funnel: List[FunnelRow] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "tenantId": self.tenant_id,
            "date": self.day.isoformat(),
            "updated": self.updated,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class BackfillResult:
    tenant_id: str
    days: int
    updated: int
    failed_days: List[date] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_days

    def to_dict(self) -> Dict:
        return {
            "ok": self.ok,
            "days": self.days,
            "updated": self.updated,
            "failedDays": [day.isoformat() for day in self.failed_days],
        }


@dataclass(frozen=True)
class ExportResult:
    """Outcome of a CSV export; a refusal is a normal result, not an error."""

    success: bool
    message: Optional[str] = None
    filename: Optional[str] = None
    csv: Optional[str] = None

    def to_dict(self) -> Dict:
        if not self.success:
            return {"success": False, "message": self.message}
        return {"success": True, "filename": self.filename, "csv": self.csv}
