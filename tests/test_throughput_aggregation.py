from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from backlog_forecast.common.time_utils import parse_iso8601, week_start
from backlog_forecast.forecasting.domain.errors import InsufficientDataError, InvalidInputError
from backlog_forecast.forecasting.domain.models import (
    UNASSIGNED_TEAM,
    TeamRemaining,
    ThroughputMetric,
    WorkItem,
    WorkItemStatus,
)
from backlog_forecast.forecasting.priors.throughput import (
    EmpiricalThroughputPrior,
    aggregate_weekly_throughput,
    summarize_remaining_work,
    throughput_stats,
)


def _done(key: str, completed: datetime, size: float | None = 3.0) -> WorkItem:
    return WorkItem(
        work_item_id=key,
        status=WorkItemStatus.DONE,
        size=size,
        created_at=completed - timedelta(days=2),
        completed_at=completed,
    )


def test_week_start_rolls_sunday_back_to_monday() -> None:
    assert week_start(date(2025, 3, 30)) == date(2025, 3, 24)  # Sunday
    assert week_start(date(2025, 3, 24)) == date(2025, 3, 24)  # Monday
    assert week_start(parse_iso8601("2025-03-30T23:59:59Z")) == date(2025, 3, 24)


def test_sunday_completion_counts_toward_preceding_monday(now: datetime) -> None:
    items = [_done("A", datetime(2025, 3, 30, 18, 0, tzinfo=timezone.utc), size=5.0)]

    samples = aggregate_weekly_throughput(items, now)

    assert len(samples) == 1
    assert samples[0].week_start == date(2025, 3, 24)
    assert samples[0].items_completed == 1
    assert samples[0].points_completed == 5.0


def test_weeks_without_completions_are_omitted_and_sorted(now: datetime) -> None:
    items = [
        _done("B", datetime(2025, 3, 19, tzinfo=timezone.utc), size=2.0),
        _done("A", datetime(2025, 3, 5, tzinfo=timezone.utc), size=3.0),
        _done("C", datetime(2025, 3, 6, tzinfo=timezone.utc), size=None),
    ]

    samples = aggregate_weekly_throughput(items, now)

    assert [s.week_start for s in samples] == [date(2025, 3, 3), date(2025, 3, 17)]
    assert samples[0].items_completed == 2
    assert samples[0].points_completed == 3.0  # unestimated adds zero points
    assert all(s.items_completed > 0 for s in samples)


def test_window_excludes_old_future_and_undone_items(now: datetime) -> None:
    items = [
        _done("old", now - timedelta(weeks=13)),
        _done("future", now + timedelta(days=1)),
        WorkItem(work_item_id="no-date", status=WorkItemStatus.DONE, size=3.0),
        WorkItem(work_item_id="wip", status=WorkItemStatus.IN_PROGRESS, size=3.0),
        _done("recent", now - timedelta(days=3)),
    ]

    samples = aggregate_weekly_throughput(items, now, lookback_weeks=12)

    assert sum(s.items_completed for s in samples) == 1


def test_no_history_gives_empty_series(now: datetime) -> None:
    assert aggregate_weekly_throughput([], now) == ()


def test_non_positive_lookback_is_rejected(now: datetime) -> None:
    with pytest.raises(InvalidInputError):
        aggregate_weekly_throughput([], now, lookback_weeks=0)


def test_naive_timestamps_are_treated_as_utc(now: datetime) -> None:
    item = _done("naive", datetime(2025, 3, 26, 9, 0))
    assert item.completed_at is not None and item.completed_at.tzinfo is not None
    assert aggregate_weekly_throughput([item], now)[0].week_start == date(2025, 3, 24)


def test_remaining_work_uses_points_when_anything_is_estimated() -> None:
    items = [
        WorkItem(work_item_id="A", status=WorkItemStatus.TODO, size=5.0),
        WorkItem(work_item_id="B", status=WorkItemStatus.IN_PROGRESS, size=None),
        WorkItem(work_item_id="C", status=WorkItemStatus.DONE, size=8.0),
    ]

    remaining = summarize_remaining_work(items)

    assert remaining.item_count == 2
    assert remaining.total_points == 5.0
    assert remaining.unestimated_count == 1
    assert remaining.metric == ThroughputMetric.POINTS
    assert remaining.amount == 5.0


def test_remaining_work_falls_back_to_item_count() -> None:
    items = [WorkItem(work_item_id=k, status=WorkItemStatus.TODO) for k in ("A", "B", "C")]

    remaining = summarize_remaining_work(items)

    assert remaining.metric == ThroughputMetric.ITEMS
    assert remaining.amount == 3.0


def test_invalid_items_are_rejected() -> None:
    with pytest.raises(InvalidInputError):
        WorkItem(work_item_id="neg", status=WorkItemStatus.TODO, size=-1.0)
    with pytest.raises(InvalidInputError):
        WorkItem(
            work_item_id="backwards",
            status=WorkItemStatus.DONE,
            created_at=datetime(2025, 3, 10, tzinfo=timezone.utc),
            completed_at=datetime(2025, 3, 9, tzinfo=timezone.utc),
        )


def test_throughput_stats_use_lower_nearest_rank(demo_throughput: tuple[float, ...]) -> None:
    stats = throughput_stats(demo_throughput)

    # sorted: 16 18 19 20 21 21 22 24 25 26 28 32
    assert stats.weeks == 12
    assert stats.median == 22.0
    assert stats.p20 == 19.0
    assert stats.p80 == 26.0
    assert stats.min == 16.0
    assert stats.max == 32.0
    assert stats.mean == pytest.approx(272.0 / 12)


def test_prior_rejects_empty_and_negative_series() -> None:
    with pytest.raises(InsufficientDataError):
        EmpiricalThroughputPrior(samples=())
    with pytest.raises(InvalidInputError):
        EmpiricalThroughputPrior(samples=(3.0, -1.0))


def test_remaining_work_is_grouped_by_team() -> None:
    items = [
        WorkItem(work_item_id="A", status=WorkItemStatus.TODO, size=3.0, team="payments"),
        WorkItem(work_item_id="B", status=WorkItemStatus.IN_PROGRESS, size=5.0, team="search"),
        WorkItem(work_item_id="C", status=WorkItemStatus.TODO, size=2.0),
        WorkItem(work_item_id="D", status=WorkItemStatus.TODO, size=3.0, team="search"),
        WorkItem(work_item_id="E", status=WorkItemStatus.TODO, team="payments"),
        WorkItem(work_item_id="F", status=WorkItemStatus.DONE, size=40.0, team="platform"),
    ]

    rw = summarize_remaining_work(items)

    assert rw.by_team == (
        TeamRemaining(team="search", item_count=2, total_points=8.0),
        TeamRemaining(team="payments", item_count=2, total_points=3.0),
        TeamRemaining(team=UNASSIGNED_TEAM, item_count=1, total_points=2.0),
    )
    assert sum(t.item_count for t in rw.by_team) == rw.item_count


def test_teams_with_equal_points_keep_first_seen_order() -> None:
    items = [
        WorkItem(work_item_id="A", status=WorkItemStatus.TODO, size=5.0, team="web"),
        WorkItem(work_item_id="B", status=WorkItemStatus.TODO, size=5.0, team="mobile"),
    ]

    assert [t.team for t in summarize_remaining_work(items).by_team] == ["web", "mobile"]


def test_nothing_undone_has_no_team_breakdown() -> None:
    assert summarize_remaining_work([]).by_team == ()
