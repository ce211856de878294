from datetime import date, timedelta

from creatormetrics.analytics import (
    DEVICE_FIELDS,
    REFERRER_FIELDS,
    build_content_report,
    compute_breakdown,
    compute_content_trend,
    compute_overview,
    compute_top_contents,
    compute_totals,
    compute_trend,
    content_export_rows,
    overview_export_rows,
    shape_overview,
    to_csv,
)
from creatormetrics.models import ChallengeMetrics, CourseMetrics, DailyMetric, PlanTier, PostMetrics
from creatormetrics.rollup import compute_funnel
from tests.helpers import event

D = date(2026, 3, 10)


def metric(content_id="c1", day=D, content_type="course", **counters):
    return DailyMetric(tenant_id="T", content_type=content_type, content_id=content_id, day=day, **counters)


def test_compute_totals_sums_every_counter():
    rows = [
        metric("c1", views=3, completes=1, watch_time=60, ratings_count=2),
        metric("c2", views=2, likes=4, downloads=1, watch_time=30),
    ]

    totals = compute_totals(rows)

    assert totals["views"] == 5
    assert totals["completes"] == 1
    assert totals["likes"] == 4
    assert totals["downloads"] == 1
    assert totals["watchTime"] == 90
    assert totals["ratingsCount"] == 2
    assert totals["starts"] == 0


def test_compute_trend_is_sorted_and_not_gap_filled():
    rows = [
        metric("c1", day=D, views=1),
        metric("c2", day=D, views=2, starts=1),
        metric("c1", day=D - timedelta(days=3), views=5),
    ]

    trend = compute_trend(rows)

    assert [entry["date"] for entry in trend] == ["2026-03-07", "2026-03-10"]
    assert trend[1] == {"date": "2026-03-10", "views": 3, "starts": 1, "completes": 0, "watchTime": 0}


def test_trend_views_sum_to_total_views():
    rows = [metric(f"c{i % 4}", day=D - timedelta(days=i % 6), views=i * 3 + 1) for i in range(20)]

    overview = compute_overview(rows)

    assert sum(entry["views"] for entry in overview["trend"]) == overview["totals"]["views"]


def test_compute_top_contents_orders_by_views_then_content_id():
    rows = [
        metric("b", views=10),
        metric("a", views=10),
        metric("c", views=4, day=D - timedelta(days=1)),
        metric("c", views=7),
        metric("d", views=1),
    ]

    top = compute_top_contents(rows)

    assert [item["contentId"] for item in top] == ["c", "a", "b"]
    assert top[0]["views"] == 11


def _full_overview(days):
    rows = [metric("c1", day=D - timedelta(days=offset), views=offset + 1) for offset in range(days)]
    return compute_overview(rows)


def test_shape_overview_starter_gets_seven_day_tail_only():
    shaped = shape_overview(_full_overview(40), PlanTier.STARTER)

    assert set(shaped) == {"totals", "trend7d", "topContents"}
    assert len(shaped["trend7d"]) == 7
    assert shaped["trend7d"][-1]["date"] == D.isoformat()


def test_shape_overview_growth_adds_28_day_tail():
    shaped = shape_overview(_full_overview(40), PlanTier.GROWTH)

    assert "trendAll" not in shaped
    assert len(shaped["trend28d"]) == 28


def test_shape_overview_pro_slices_share_one_trend():
    full = _full_overview(40)

    shaped = shape_overview(full, PlanTier.PRO)

    assert shaped["trendAll"] == full["trend"]
    assert shaped["trend7d"] == full["trend"][-7:]
    assert shaped["trend28d"] == full["trend"][-28:]


def test_shape_overview_returns_fresh_containers():
    full = _full_overview(10)

    shaped = shape_overview(full, PlanTier.PRO)
    shaped["totals"]["views"] = -1
    shaped["trendAll"][0]["views"] = -1
    shaped["topContents"].append({})

    assert full["totals"]["views"] != -1
    assert full["trend"][0]["views"] != -1
    assert len(full["topContents"]) == 1


def test_compute_content_trend_keeps_only_that_item():
    rows = [
        metric("c1", day=D - timedelta(days=1), views=2),
        metric("c1", day=D, views=3),
        metric("c2", day=D, views=50),
    ]

    result = compute_content_trend(rows, "c1")

    assert result["contentId"] == "c1"
    assert result["totals"]["views"] == 5
    assert [entry["views"] for entry in result["trend"]] == [2, 3]


def test_short_range_trend7d_is_the_full_trend():
    full = _full_overview(5)

    shaped = shape_overview(full, PlanTier.STARTER)

    assert shaped["trend7d"] == full["trend"]


def test_build_course_report_sorts_by_views_and_carries_funnel():
    rows = [
        metric("c1", views=2, starts=4, completes=1),
        metric("c2", views=9, starts=0, completes=0),
        metric("p1", content_type="post", views=100),
    ]
    funnel = compute_funnel([event("start", content_id="c1", chapterId="ch1")], "chapterId")

    report = build_content_report("course", rows, funnel)

    assert isinstance(report, CourseMetrics)
    assert [row.content_id for row in report.rows] == ["c2", "c1"]
    assert report.rows[1].completion_rate == 0.25
    assert report.rows[0].completion_rate == 0
    assert report.to_dict()["chapterFunnel"][0]["stepId"] == "ch1"


def test_build_challenge_report_sorts_by_completes():
    rows = [
        metric("x", content_type="challenge", views=50, completes=1),
        metric("y", content_type="challenge", views=5, completes=3),
    ]

    report = build_content_report("challenge", rows, [])

    assert isinstance(report, ChallengeMetrics)
    assert [row.content_id for row in report.rows] == ["y", "x"]


def test_build_post_report_has_no_funnel():
    report = build_content_report("post", [metric("p1", content_type="post", views=1, bookmarks=2)])

    assert isinstance(report, PostMetrics)
    assert report.to_dict()["byPost"][0]["bookmarks"] == 2


def test_compute_breakdown_counts_and_limits():
    events = [
        event("view", device="mobile", os="iOS", browser="Safari"),
        event("view", device="mobile", os="iOS", browser="Safari"),
        event("view", device="desktop", os="Linux", browser="Firefox"),
    ]

    rows = compute_breakdown(events, DEVICE_FIELDS)
    limited = compute_breakdown(events, REFERRER_FIELDS, limit=1)

    assert rows[0] == {"device": "mobile", "os": "iOS", "browser": "Safari", "count": 2}
    assert rows[1]["count"] == 1
    assert limited == [{"referrer": None, "utm_source": None, "utm_medium": None, "utm_campaign": None, "count": 3}]


def test_to_csv_quotes_only_when_needed():
    csv = to_csv([["name", "value"], ["plain", 1], ["a,b", 'say "hi"'], ["line\nbreak", None]])

    assert csv.split("\n")[0] == "name,value"
    assert csv.split("\n")[1] == "plain,1"
    assert '"a,b","say ""hi"""' in csv
    assert csv.endswith('"line\nbreak",')


def test_export_rows_use_scope_columns():
    overview = compute_overview([metric("c1", views=3)])
    report = build_content_report("product", [metric("e1", content_type="product", views=2, downloads=5)])

    assert overview_export_rows(overview)[:2] == [["metric", "value"], ["views", 3]]
    assert content_export_rows(report) == [
        ["contentId", "views", "likes", "shares", "downloads"],
        ["e1", 2, 0, 0, 5],
    ]
