from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from datetime import date
from typing import Mapping, Protocol, Sequence

from backlog_forecast.forecasting.domain.errors import InvalidInputError
from backlog_forecast.forecasting.domain.models import (
    ThroughputMetric,
    WeeklyThroughputSample,
    WorkItem,
    WorkItemStatus,
)


class Scenario(Protocol):
    scenario_id: str

    def apply_work_items(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        ...

    def apply_throughput(
        self,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric,
    ) -> list[float]:
        ...

    def change_summary(self) -> dict[str, int]:
        """Number of changes per kind, e.g. ``{"scope_add": 2}``."""
        ...


def _values(samples: Sequence[WeeklyThroughputSample], metric: ThroughputMetric) -> list[float]:
    return [s.value(metric) for s in samples]


@dataclass(frozen=True)
class IdentityScenario:
    scenario_id: str = "baseline"

    def apply_work_items(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        return list(items)

    def apply_throughput(
        self,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric,
    ) -> list[float]:
        return _values(samples, metric)

    def change_summary(self) -> dict[str, int]:
        return {}


@dataclass(frozen=True)
class ScopeChangeScenario:
    """Drop items from scope and/or add new unstarted items (e.g. a late feature)."""

    scenario_id: str
    removed_ids: frozenset[str] = frozenset()
    added: tuple[WorkItem, ...] = ()

    def remove(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        return [w for w in items if w.work_item_id not in self.removed_ids]

    def add(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        out = list(items)
        for w in self.added:
            out.append(w if w.status == WorkItemStatus.TODO else replace(w, status=WorkItemStatus.TODO, completed_at=None))
        return out

    def apply_work_items(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        return self.add(self.remove(items))

    def apply_throughput(
        self,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric,
    ) -> list[float]:
        return _values(samples, metric)

    def change_summary(self) -> dict[str, int]:
        out = {"scope_remove": len(self.removed_ids), "scope_add": len(self.added)}
        return {k: v for k, v in out.items() if v}


@dataclass(frozen=True)
class EstimateOverrideScenario:
    """Replace the declared size of specific items (e.g. after re-estimation)."""

    scenario_id: str
    sizes: Mapping[str, float]

    def apply_work_items(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        return [
            replace(w, size=float(self.sizes[w.work_item_id])) if w.work_item_id in self.sizes else w
            for w in items
        ]

    def apply_throughput(
        self,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric,
    ) -> list[float]:
        return _values(samples, metric)

    def change_summary(self) -> dict[str, int]:
        return {"estimate_override": len(self.sizes)} if self.sizes else {}


@dataclass(frozen=True)
class CapacityMultiplierScenario:
    """Scale historical throughput in a date range (e.g. 0.5 for a half-staffed period)."""

    scenario_id: str
    multiplier: float
    start: date | None = None
    end: date | None = None

    def __post_init__(self) -> None:
        if self.multiplier < 0:
            raise InvalidInputError(f"multiplier must be non-negative, got {self.multiplier}")

    def _affects(self, week: date) -> bool:
        if self.start is not None and week < self.start:
            return False
        if self.end is not None and week > self.end:
            return False
        return True

    def scale(self, samples: Sequence[WeeklyThroughputSample], values: Sequence[float]) -> list[float]:
        return [v * self.multiplier if self._affects(s.week_start) else v for s, v in zip(samples, values)]

    def apply_work_items(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        return list(items)

    def apply_throughput(
        self,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric,
    ) -> list[float]:
        return self.scale(samples, _values(samples, metric))

    def change_summary(self) -> dict[str, int]:
        return {"capacity_multiplier": 1}


@dataclass(frozen=True)
class CompositeScenario:
    """Several changes evaluated together as one what-if.

    Work-item changes apply in a fixed order whatever the order of ``parts``:
    every scope removal, then every addition, then estimate overrides. An
    override can therefore resize an item another part added. Capacity
    multipliers compound on overlapping weeks.
    """

    scenario_id: str
    parts: tuple[Scenario, ...] = ()

    def _scope(self) -> list[ScopeChangeScenario]:
        return [p for p in self.parts if isinstance(p, ScopeChangeScenario)]

    def apply_work_items(self, items: Sequence[WorkItem]) -> list[WorkItem]:
        out = list(items)
        for p in self._scope():
            out = p.remove(out)
        for p in self._scope():
            out = p.add(out)
        for p in self.parts:
            if not isinstance(p, ScopeChangeScenario):
                out = p.apply_work_items(out)
        return out

    def apply_throughput(
        self,
        samples: Sequence[WeeklyThroughputSample],
        metric: ThroughputMetric,
    ) -> list[float]:
        values = _values(samples, metric)
        for p in self.parts:
            if isinstance(p, CapacityMultiplierScenario):
                values = p.scale(samples, values)
        return values

    def change_summary(self) -> dict[str, int]:
        total: Counter[str] = Counter()
        for p in self.parts:
            total.update(p.change_summary())
        return dict(total)
