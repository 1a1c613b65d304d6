from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Protocol, Sequence

import numpy as np

from backlog_forecast.common.time_utils import as_utc
from backlog_forecast.forecasting.domain.errors import InvalidInputError


class WorkItemStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class ThroughputMetric(str, Enum):
    POINTS = "points"
    ITEMS = "items"


@dataclass(frozen=True)
class WorkItem:
    """Read-only snapshot of a tracker item for one computation."""

    work_item_id: str
    status: WorkItemStatus
    created_at: datetime | None = None
    completed_at: datetime | None = None
    size: float | None = None  # story points; None = unestimated
    summary: str = ""
    assignee: str | None = None
    team: str | None = None

    def __post_init__(self) -> None:
        if self.size is not None:
            size = float(self.size)
            if not math.isfinite(size) or size < 0:
                raise InvalidInputError(f"{self.work_item_id}: size must be a non-negative number, got {self.size!r}")
            object.__setattr__(self, "size", size)
        if self.created_at is not None:
            object.__setattr__(self, "created_at", as_utc(self.created_at))
        if self.completed_at is not None:
            object.__setattr__(self, "completed_at", as_utc(self.completed_at))
        if (
            self.created_at is not None
            and self.completed_at is not None
            and self.completed_at < self.created_at
        ):
            raise InvalidInputError(f"{self.work_item_id}: completed_at precedes created_at")

    @property
    def is_done(self) -> bool:
        return self.status == WorkItemStatus.DONE

    @property
    def is_estimated(self) -> bool:
        return self.size is not None and self.size > 0


@dataclass(frozen=True)
class WeeklyThroughputSample:
    week_start: date  # always a Monday
    items_completed: int
    points_completed: float

    def value(self, metric: ThroughputMetric) -> float:
        if metric == ThroughputMetric.ITEMS:
            return float(self.items_completed)
        return float(self.points_completed)


UNASSIGNED_TEAM = "unassigned"


@dataclass(frozen=True)
class TeamRemaining:
    team: str
    item_count: int
    total_points: float


@dataclass(frozen=True)
class RemainingWork:
    item_count: int
    total_points: float
    unestimated_count: int
    by_team: tuple[TeamRemaining, ...] = ()  # largest point total first

    @property
    def metric(self) -> ThroughputMetric:
        # Fall back to item counts only when nothing undone carries a size.
        if self.item_count > 0 and self.unestimated_count == self.item_count:
            return ThroughputMetric.ITEMS
        return ThroughputMetric.POINTS

    @property
    def amount(self) -> float:
        if self.metric == ThroughputMetric.ITEMS:
            return float(self.item_count)
        return float(self.total_points)


@dataclass(frozen=True)
class ThroughputStats:
    median: float
    mean: float
    p20: float
    p80: float
    min: float
    max: float
    weeks: int


@dataclass(frozen=True)
class HistogramBucket:
    weeks: int
    count: int
    probability: float


@dataclass(frozen=True)
class BurnDownPoint:
    week: int
    remaining: float


@dataclass(frozen=True)
class BurnDown:
    p50: tuple[BurnDownPoint, ...] = ()
    p80: tuple[BurnDownPoint, ...] = ()


@dataclass(frozen=True)
class ForecastResult:
    p50: int
    p80: int
    p95: int
    mean_weeks: float
    min_weeks: int
    max_weeks: int
    histogram: tuple[HistogramBucket, ...]
    burn_down: BurnDown
    sample_count: int
    throughput_stats: ThroughputStats
    remaining_work: float
    week_cap: int
    saturated_trials: int = 0
    seed: str = ""

    @property
    def saturated(self) -> bool:
        """True when some trials hit the week cap; tail percentiles are then lower bounds."""
        return self.saturated_trials > 0


ProgressCallback = Callable[[int, int, float], None]
CancelCheck = Callable[[], bool]


class CompletionForecaster(Protocol):
    def forecast(
        self,
        remaining_work: float,
        throughput: Sequence[float],
        seed: str,
        sample_count: int = ...,
        week_cap: int = ...,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> ForecastResult:
        ...


class ThroughputPrior(Protocol):
    def sample_weekly_throughput(self, rng: np.random.Generator, size: tuple[int, ...]) -> np.ndarray:
        """Sample weekly throughput values with the given array shape."""
        ...
