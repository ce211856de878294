"""Pure report functions over daily metric snapshots and raw events."""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import (
    ChallengeMetrics,
    ContentMetrics,
    ContentType,
    CourseMetrics,
    DailyMetric,
    EventMetrics,
    FunnelRow,
    PlanTier,
    PostMetrics,
    ProductMetrics,
    RawEvent,
    SessionMetrics,
)
from .rollup import completion_rate

TOTAL_FIELDS = {
    "views": "views",
    "starts": "starts",
    "completes": "completes",
    "likes": "likes",
    "shares": "shares",
    "downloads": "downloads",
    "bookmarks": "bookmarks",
    "watchTime": "watch_time",
    "ratingsCount": "ratings_count",
}

TREND_FIELDS = {
    "views": "views",
    "starts": "starts",
    "completes": "completes",
    "watchTime": "watch_time",
}

DEVICE_FIELDS = (("device", "device"), ("os", "os"), ("browser", "browser"))
REFERRER_FIELDS = (
    ("referrer", "referrer"),
    ("utm_source", "utm_source"),
    ("utm_medium", "utm_medium"),
    ("utm_campaign", "utm_campaign"),
)

# Sort key (descending) for each per-type report.
CONTENT_SORT_FIELDS = {
    ContentType.COURSE.value: "views",
    ContentType.CHALLENGE.value: "completes",
    ContentType.SESSION.value: "views",
    ContentType.EVENT.value: "views",
    ContentType.PRODUCT.value: "views",
    ContentType.POST.value: "views",
}

EXPORT_COLUMNS = {
    ContentType.COURSE.value: (
        "contentId", "views", "starts", "completes", "completionRate", "watchTime", "ratingsCount",
    ),
    ContentType.CHALLENGE.value: ("contentId", "views", "starts", "completes", "completionRate"),
    ContentType.SESSION.value: ("contentId", "views", "starts", "completes", "completionRate"),
    ContentType.EVENT.value: ("contentId", "views", "starts", "completes"),
    ContentType.PRODUCT.value: ("contentId", "views", "likes", "shares", "downloads"),
    ContentType.POST.value: ("contentId", "views", "likes", "shares", "bookmarks", "ratingsCount"),
}

_CONTENT_FIELDS = (
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

_REPORT_TYPES = {
    ContentType.SESSION.value: SessionMetrics,
    ContentType.EVENT.value: EventMetrics,
    ContentType.PRODUCT.value: ProductMetrics,
    ContentType.POST.value: PostMetrics,
}


def compute_totals(rows: Iterable[DailyMetric]) -> Dict:
    """Sum every counter across rows."""
    totals = {name: 0 for name in TOTAL_FIELDS}
    for row in rows:
        for name, attr in TOTAL_FIELDS.items():
            totals[name] += getattr(row, attr)
    return totals


def compute_trend(rows: Iterable[DailyMetric]) -> List[Dict]:
    """One entry per day present in rows, ascending by day. Missing days are not filled."""
    by_day: Dict = {}
    for row in rows:
        entry = by_day.setdefault(row.day, {name: 0 for name in TREND_FIELDS})
        for name, attr in TREND_FIELDS.items():
            entry[name] += getattr(row, attr)
    return [{"date": day.isoformat(), **by_day[day]} for day in sorted(by_day)]


def compute_top_contents(rows: Iterable[DailyMetric], limit: int = 3) -> List[Dict]:
    """Contents with the most views; ties go to the lower content id."""
    summed: Dict[Tuple[str, str], Dict[str, int]] = {}
    for row in rows:
        entry = summed.setdefault((row.content_type, row.content_id), {"views": 0, "completes": 0})
        entry["views"] += row.views
        entry["completes"] += row.completes

    ranked = sorted(summed.items(), key=lambda item: (-item[1]["views"], item[0][1], item[0][0]))
    return [
        {
            "contentType": content_type,
            "contentId": content_id,
            "views": values["views"],
            "completes": values["completes"],
        }
        for (content_type, content_id), values in ranked[:limit]
    ]


def compute_overview(rows: Iterable[DailyMetric], top_limit: int = 3) -> Dict:
    rows_list = list(rows)
    return {
        "totals": compute_totals(rows_list),
        "trend": compute_trend(rows_list),
        "topContents": compute_top_contents(rows_list, limit=top_limit),
    }


def shape_overview(full: Dict, plan: PlanTier) -> Dict:
    """Cut the full overview down to what the plan tier may see.

    Every trend slice is a tail of the same sorted ``trend`` array.
    """
    trend = full["trend"]
    shaped = {
        "totals": dict(full["totals"]),
        "trend7d": [dict(entry) for entry in trend[-7:]],
    }
    if plan.rank >= PlanTier.GROWTH.rank:
        shaped["trend28d"] = [dict(entry) for entry in trend[-28:]]
    if plan is PlanTier.PRO:
        shaped["trendAll"] = [dict(entry) for entry in trend]
    shaped["topContents"] = [dict(item) for item in full["topContents"]]
    return shaped


def compute_content_trend(rows: Iterable[DailyMetric], content_id: str) -> Dict:
    own = [row for row in rows if row.content_id == content_id]
    return {
        "contentId": content_id,
        "totals": compute_totals(own),
        "trend": compute_trend(own),
    }


def group_by_content(rows: Iterable[DailyMetric], sort_field: str = "views") -> List[ContentMetrics]:
    """Sum each content's snapshots over the range, sorted by sort_field descending."""
    summed: Dict[str, Dict[str, float]] = {}
    for row in rows:
        entry = summed.setdefault(row.content_id, {name: 0 for name in _CONTENT_FIELDS})
        for name in _CONTENT_FIELDS:
            entry[name] += getattr(row, name)

    result = [
        ContentMetrics(
            content_id=content_id,
            completion_rate=completion_rate(values["completes"], values["starts"]),
            **values,
        )
        for content_id, values in summed.items()
    ]
    result.sort(key=lambda item: (-getattr(item, sort_field), item.content_id))
    return result


def build_content_report(
    content_type: str,
    rows: Iterable[DailyMetric],
    funnel: Optional[Sequence[FunnelRow]] = None,
):
    """Build the typed report for one content type."""
    grouped = group_by_content(
        (row for row in rows if row.content_type == content_type),
        sort_field=CONTENT_SORT_FIELDS[content_type],
    )
    if content_type == ContentType.COURSE.value:
        return CourseMetrics(rows=grouped, chapter_funnel=list(funnel or []))
    if content_type == ContentType.CHALLENGE.value:
        return ChallengeMetrics(rows=grouped, step_funnel=list(funnel or []))
    return _REPORT_TYPES[content_type](rows=grouped)


def compute_breakdown(
    events: Iterable[RawEvent],
    fields: Sequence[Tuple[str, str]],
    limit: Optional[int] = None,
) -> List[Dict]:
    """Count events by a tuple of metadata values, most frequent first."""
    counts: Dict[Tuple, int] = {}
    for event in events:
        metadata = event.metadata or {}
        key = tuple(metadata.get(meta_key) for _, meta_key in fields)
        counts[key] = counts.get(key, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: (-item[1], tuple(str(v) for v in item[0])))
    if limit is not None:
        ranked = ranked[:limit]
    return [
        {**{name: value for (name, _), value in zip(fields, key)}, "count": count}
        for key, count in ranked
    ]


def overview_export_rows(overview: Dict) -> List[List]:
    totals = overview["totals"]
    return [["metric", "value"], *([name, totals[name]] for name in TOTAL_FIELDS)]


def content_export_rows(report) -> List[List]:
    columns = EXPORT_COLUMNS[report.content_type]
    rows: List[List] = [list(columns)]
    for item in report.rows:
        data = item.to_dict()
        rows.append([data[column] for column in columns])
    return rows


def to_csv(rows: Iterable[Sequence]) -> str:
    """Serialize rows; a field is quoted when it holds a comma, quote or newline."""
    return "\n".join(",".join(_csv_field(value) for value in row) for row in rows)


def _csv_field(value) -> str:
    if value is None:
        return ""
    text = str(value)
    if any(char in text for char in (",", '"', "\n")):
        return '"' + text.replace('"', '""') + '"'
    return text

