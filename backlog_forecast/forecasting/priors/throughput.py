from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Sequence

import numpy as np

from backlog_forecast.common.time_utils import as_utc, week_start
from backlog_forecast.forecasting.domain.errors import InsufficientDataError, InvalidInputError
from backlog_forecast.forecasting.domain.models import (
    UNASSIGNED_TEAM,
    RemainingWork,
    TeamRemaining,
    ThroughputMetric,
    ThroughputPrior,
    ThroughputStats,
    WeeklyThroughputSample,
    WorkItem,
    WorkItemStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_WEEKS = 12


def completed_in_window(
    items: Iterable[WorkItem],
    now: datetime,
    lookback_weeks: int = DEFAULT_LOOKBACK_WEEKS,
) -> list[WorkItem]:
    """Done items whose completion falls inside ``[now - lookback, now]``."""
    if lookback_weeks <= 0:
        raise InvalidInputError(f"lookback_weeks must be positive, got {lookback_weeks}")
    now = as_utc(now)
    cutoff = now - timedelta(weeks=lookback_weeks)
    return [
        it
        for it in items
        if it.is_done and it.completed_at is not None and cutoff <= it.completed_at <= now
    ]


def aggregate_weekly_throughput(
    items: Iterable[WorkItem],
    now: datetime,
    lookback_weeks: int = DEFAULT_LOOKBACK_WEEKS,
) -> tuple[WeeklyThroughputSample, ...]:
    """Group completed items into Monday-based calendar weeks.

    Weeks without completions are omitted, so every sample has nonzero
    activity. Output is sorted by week start.
    """
    counts: dict[date, int] = {}
    points: dict[date, float] = {}
    for it in completed_in_window(items, now, lookback_weeks):
        assert it.completed_at is not None
        key = week_start(it.completed_at)
        counts[key] = counts.get(key, 0) + 1
        points[key] = points.get(key, 0.0) + float(it.size or 0.0)

    samples = tuple(
        WeeklyThroughputSample(week_start=k, items_completed=counts[k], points_completed=points[k])
        for k in sorted(counts)
    )
    logger.debug("Aggregated %d weekly throughput samples", len(samples))
    return samples


def summarize_team_remaining(undone: Iterable[WorkItem]) -> tuple[TeamRemaining, ...]:
    """Per-team remaining items and points, largest point total first.

    Items without a team are grouped under ``unassigned``. Ties keep the
    order in which teams first appear.
    """
    counts: dict[str, int] = {}
    points: dict[str, float] = {}
    for it in undone:
        team = it.team or UNASSIGNED_TEAM
        counts[team] = counts.get(team, 0) + 1
        points[team] = points.get(team, 0.0) + float(it.size or 0.0)
    teams = sorted(counts, key=lambda t: -points[t])
    return tuple(TeamRemaining(team=t, item_count=counts[t], total_points=points[t]) for t in teams)


def summarize_remaining_work(items: Iterable[WorkItem]) -> RemainingWork:
    undone = [it for it in items if it.status in (WorkItemStatus.TODO, WorkItemStatus.IN_PROGRESS)]
    return RemainingWork(
        item_count=len(undone),
        total_points=float(sum(it.size or 0.0 for it in undone)),
        unestimated_count=sum(1 for it in undone if not it.is_estimated),
        by_team=summarize_team_remaining(undone),
    )


def throughput_values(
    samples: Sequence[WeeklyThroughputSample],
    metric: ThroughputMetric = ThroughputMetric.POINTS,
) -> tuple[float, ...]:
    return tuple(s.value(metric) for s in samples)


def throughput_stats(values: Sequence[float]) -> ThroughputStats:
    """Summary of the positive throughput values using lower nearest-rank indices."""
    x = np.sort(np.array([float(v) for v in values if v > 0], dtype=float))
    if x.size == 0:
        return ThroughputStats(median=0.0, mean=0.0, p20=0.0, p80=0.0, min=0.0, max=0.0, weeks=0)
    n = int(x.size)
    return ThroughputStats(
        median=float(x[n // 2]),
        mean=float(np.mean(x)),
        p20=float(x[int(math.floor(n * 0.2))]),
        p80=float(x[int(math.floor(n * 0.8))]),
        min=float(x[0]),
        max=float(x[-1]),
        weeks=n,
    )


@dataclass(frozen=True)
class EmpiricalThroughputPrior(ThroughputPrior):
    """Empirical bootstrap prior over weekly throughput."""

    samples: tuple[float, ...]

    def __post_init__(self) -> None:
        if not self.samples:
            raise InsufficientDataError("No historical throughput data available")
        for v in self.samples:
            if not math.isfinite(float(v)) or float(v) < 0:
                raise InvalidInputError(f"Throughput values must be finite and non-negative, got {v!r}")

    @classmethod
    def from_weekly_samples(
        cls,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric = ThroughputMetric.POINTS,
    ) -> "EmpiricalThroughputPrior":
        return cls(samples=throughput_values(samples, metric))

    def sample_weekly_throughput(self, rng: np.random.Generator, size: tuple[int, ...]) -> np.ndarray:
        pool = np.asarray(self.samples, dtype=float)
        idx = rng.integers(0, pool.size, size=size)
        return pool[idx]

    def sorted_values(self) -> np.ndarray:
        return np.sort(np.asarray(self.samples, dtype=float))
