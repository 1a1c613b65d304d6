from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal, Sequence

import numpy as np
import scipy.stats as st

from backlog_forecast.forecasting.domain.models import WorkItem

logger = logging.getLogger(__name__)

BiasType = Literal[
    "severe_overestimation",
    "moderate_overestimation",
    "well_calibrated",
    "moderate_underestimation",
    "severe_underestimation",
]
Priority = Literal["high", "medium", "info"]

SECONDS_PER_DAY = 86_400.0
BIAS_RECOMMENDATION_TYPES = frozenset({"underestimation", "overestimation"})


@dataclass(frozen=True)
class SizeGroupStats:
    size: float
    count: int
    avg_cycle_time_days: float
    min_cycle_time_days: float
    max_cycle_time_days: float
    avg_days_per_point: float
    variability: int  # coefficient of variation of cycle time, percent


@dataclass(frozen=True)
class EstimationBias:
    type: BiasType
    score: int  # round(linearity * 100); 100 = proportional
    linearity: float
    message: str


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: Priority
    title: str
    detail: str
    suggested_multiplier: float | None = None
    affected_sizes: tuple[float, ...] = ()


@dataclass(frozen=True)
class EstimationProfile:
    sample_size: int
    overall_avg_days_per_point: float
    by_size: tuple[SizeGroupStats, ...]
    bias: EstimationBias
    recommendations: tuple[Recommendation, ...] = ()
    insufficient: bool = field(default=False, init=False)

    def high_variability_count(self) -> int:
        return sum(1 for r in self.recommendations if r.type == "high_variability")

    def bias_warning_count(self) -> int:
        return sum(1 for r in self.recommendations if r.type in BIAS_RECOMMENDATION_TYPES)


@dataclass(frozen=True)
class InsufficientEstimation:
    sample_size: int
    min_required: int
    message: str
    insufficient: bool = field(default=True, init=False)


EstimationOutcome = EstimationProfile | InsufficientEstimation


@dataclass(frozen=True)
class _ItemCycle:
    size: float
    cycle_time_days: float

    @property
    def days_per_point(self) -> float:
        return self.cycle_time_days / self.size


def _fmt_size(size: float) -> str:
    return f"{size:g}"


def classify_bias(linearity: float) -> BiasType:
    if linearity < 0.5:
        return "severe_overestimation"
    if linearity < 0.8:
        return "moderate_overestimation"
    if linearity <= 1.2:
        return "well_calibrated"
    if linearity <= 1.5:
        return "moderate_underestimation"
    return "severe_underestimation"


_BIAS_MESSAGES: dict[str, str] = {
    "severe_overestimation": "Larger estimates finish far faster than their size suggests.",
    "moderate_overestimation": "Larger estimates tend to finish faster than their size suggests.",
    "well_calibrated": "Story point estimates correlate well with actual effort.",
    "moderate_underestimation": "Larger estimates tend to take longer than their size suggests.",
    "severe_underestimation": "Larger estimates take far longer than their size suggests.",
}


def _coefficient_of_variation_pct(values: np.ndarray) -> int:
    mean = float(np.mean(values))
    if values.size < 2 or mean == 0:
        return 0
    return int(round(float(st.variation(values)) * 100))


def linearity_score(groups: Sequence[SizeGroupStats]) -> float:
    """Mean of ``actual_ratio / expected_ratio`` over adjacent size pairs.

    Groups must be sorted by size. Returns 1.0 when there is no usable pair.
    """
    accuracies: list[float] = []
    for lower, higher in zip(groups, groups[1:]):
        if lower.avg_cycle_time_days <= 0:
            continue
        expected_ratio = higher.size / lower.size
        actual_ratio = higher.avg_cycle_time_days / lower.avg_cycle_time_days
        accuracies.append(actual_ratio / expected_ratio)
    if not accuracies:
        return 1.0
    return float(np.mean(accuracies))


@dataclass
class EstimationAccuracyAnalyzer:
    """Compares declared size with actual cycle time of completed items.

    Systematic mis-calibration shows up as cycle time that does not grow in
    proportion to size across adjacent size values.
    """

    min_samples: int = 3
    high_variability_pct: float = 50.0
    high_variability_min_count: int = 3
    slow_factor: float = 1.5

    def analyze(self, completed_items: Iterable[WorkItem]) -> EstimationOutcome:
        cycles = [
            _ItemCycle(
                size=float(it.size),  # type: ignore[arg-type]
                cycle_time_days=(it.completed_at - it.created_at).total_seconds() / SECONDS_PER_DAY,  # type: ignore[operator]
            )
            for it in completed_items
            if it.is_done and it.is_estimated and it.created_at is not None and it.completed_at is not None
        ]

        if len(cycles) < self.min_samples:
            logger.info("Estimation analysis skipped: %d qualifying items", len(cycles))
            return InsufficientEstimation(
                sample_size=len(cycles),
                min_required=self.min_samples,
                message=(
                    f"Need at least {self.min_samples} completed issues with estimates "
                    f"(found {len(cycles)})"
                ),
            )

        groups = self._group_by_size(cycles)
        overall = float(np.mean([c.days_per_point for c in cycles]))

        linearity = linearity_score(groups)
        bias_type = classify_bias(linearity)
        bias = EstimationBias(
            type=bias_type,
            score=int(round(linearity * 100)),
            linearity=linearity,
            message=_BIAS_MESSAGES[bias_type],
        )

        return EstimationProfile(
            sample_size=len(cycles),
            overall_avg_days_per_point=overall,
            by_size=groups,
            bias=bias,
            recommendations=tuple(self._recommend(groups, bias, overall)),
        )

    def _group_by_size(self, cycles: Sequence[_ItemCycle]) -> tuple[SizeGroupStats, ...]:
        by_size: dict[float, list[_ItemCycle]] = {}
        for c in cycles:
            by_size.setdefault(c.size, []).append(c)

        out: list[SizeGroupStats] = []
        for size in sorted(by_size):
            members = by_size[size]
            ct = np.array([c.cycle_time_days for c in members], dtype=float)
            out.append(
                SizeGroupStats(
                    size=size,
                    count=len(members),
                    avg_cycle_time_days=float(np.mean(ct)),
                    min_cycle_time_days=float(np.min(ct)),
                    max_cycle_time_days=float(np.max(ct)),
                    avg_days_per_point=float(np.mean([c.days_per_point for c in members])),
                    variability=_coefficient_of_variation_pct(ct),
                )
            )
        return tuple(out)

    def _recommend(
        self,
        groups: Sequence[SizeGroupStats],
        bias: EstimationBias,
        overall_days_per_point: float,
    ) -> list[Recommendation]:
        recs: list[Recommendation] = []

        for g in groups:
            if g.variability > self.high_variability_pct and g.count >= self.high_variability_min_count:
                recs.append(
                    Recommendation(
                        type="high_variability",
                        priority="high",
                        title=f"{_fmt_size(g.size)}-point stories vary widely",
                        detail=(
                            f"{_fmt_size(g.size)}-point stories take between {g.min_cycle_time_days:.1f} and "
                            f"{g.max_cycle_time_days:.1f} days ({g.variability}% variability). "
                            "Consider breaking these down into smaller, better understood pieces."
                        ),
                        affected_sizes=(g.size,),
                    )
                )

        if bias.type != "well_calibrated":
            under = bias.type.endswith("underestimation")
            multiplier = bias.score / 100.0
            recs.append(
                Recommendation(
                    type="underestimation" if under else "overestimation",
                    priority="high" if bias.type.startswith("severe") else "medium",
                    title="Larger stories are underestimated" if under else "Larger stories are overestimated",
                    detail=(
                        f"Cycle time grows {'faster' if under else 'slower'} than story size "
                        f"(linearity {bias.score}%). Multiply larger estimates by {multiplier:g} "
                        "to align them with observed effort."
                    ),
                    suggested_multiplier=multiplier,
                )
            )

        slow = [g for g in groups if g.avg_days_per_point > overall_days_per_point * self.slow_factor]
        if slow:
            recs.append(
                Recommendation(
                    type="slow_point_value",
                    priority="medium",
                    title="Some point values are disproportionately slow",
                    detail=(
                        f"These sizes take more than {self.slow_factor:g}x the average "
                        f"{overall_days_per_point:.2f} days per point. Review how they are sized."
                    ),
                    affected_sizes=tuple(g.size for g in slow),
                )
            )

        if not recs and bias.type == "well_calibrated":
            recs.append(
                Recommendation(
                    type="well_calibrated",
                    priority="info",
                    title="Estimates are well calibrated",
                    detail=(
                        f"Your team averages {overall_days_per_point:.2f} days per story point with good "
                        "correlation between estimates and actual effort."
                    ),
                )
            )

        return recs
