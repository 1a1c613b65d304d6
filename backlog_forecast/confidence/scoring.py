from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

import numpy as np
import scipy.stats as st

from backlog_forecast.estimation.accuracy import EstimationOutcome
from backlog_forecast.forecasting.domain.models import (
    ForecastResult,
    ThroughputMetric,
    WeeklyThroughputSample,
)

logger = logging.getLogger(__name__)

PercentileChoice = Literal["P50", "P80", "P95", "CUSTOM"]

MIN_VELOCITY_SAMPLES = 3
MIN_CONFIDENCE = 20
MAX_CONFIDENCE = 95


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


@dataclass(frozen=True)
class ComponentScore:
    score: int
    level: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PercentileRecommendation:
    percentile: PercentileChoice
    confidence_score: int
    rationale: str
    velocity_score: int
    estimation_score: int
    percentiles: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfidenceAssessment:
    velocity_stability: ComponentScore
    estimation_confidence: ComponentScore
    recommendation: PercentileRecommendation
    confidence: int


_VELOCITY_MESSAGES = {
    "very_stable": "Your team's velocity is very consistent ({cv}% variability). Forecasts based on historical data are highly reliable.",
    "stable": "Velocity is stable ({cv}% variability). Good foundation for forecasting, though plan for some weekly fluctuation.",
    "moderate": "Velocity shows moderate variation ({cv}% variability). Forecasts are reasonable but include a buffer for variance.",
    "volatile": "Velocity is quite volatile ({cv}% variability). Consider investigating causes and look for patterns.",
    "highly_volatile": "Velocity varies significantly ({cv}% variability). Forecast accuracy is limited without addressing root causes.",
}

_ESTIMATION_MESSAGES = {
    "well_calibrated": "Estimates are well-calibrated to actual effort (bias: {bias}%). Team sizing is predictable.",
    "acceptable": "Estimates are reasonable but show some deviation (bias: {bias}%). Minor adjustments could improve accuracy.",
    "needs_adjustment": "Estimates need calibration (bias: {bias}%). Team tends to {direction} effort.",
    "poorly_calibrated": "Significant gap between estimates and actual effort (bias: {bias}%). Strongly recommend reviewing estimation process.",
}

_RATIONALES: dict[str, str] = {
    "P50": (
        "High confidence in estimates. Team velocity is stable and estimates are well-calibrated. "
        "Use P50 as your baseline commitment."
    ),
    "P80": (
        "Moderate confidence. Velocity is fairly consistent and estimates are reasonable. "
        "P80 provides realistic buffer for execution risks."
    ),
    "P95": (
        "Lower confidence due to velocity volatility or estimation issues. "
        "Use P95 for safer planning and stakeholder commitments."
    ),
    "CUSTOM": (
        "Insufficient confidence in baseline forecasts. Recommend improving estimation practices "
        "and collecting more velocity data before committing."
    ),
}


def _velocity_band(cv: float) -> tuple[int, str]:
    if cv < 15:
        return 95, "very_stable"
    if cv < 25:
        return 80, "stable"
    if cv < 40:
        return 60, "moderate"
    if cv < 60:
        return 40, "volatile"
    return 20, "highly_volatile"


def _estimation_band(bias_score: int) -> tuple[int, str]:
    if 95 <= bias_score <= 105:
        return 90, "well_calibrated"
    if 85 <= bias_score <= 115:
        return 75, "acceptable"
    if 70 <= bias_score <= 130:
        return 55, "needs_adjustment"
    return 35, "poorly_calibrated"


def recommend_percentile(combined_score: float) -> PercentileChoice:
    if combined_score >= 80:
        return "P50"
    if combined_score >= 60:
        return "P80"
    if combined_score >= 40:
        return "P95"
    return "CUSTOM"


def analyze_velocity_stability(values: Sequence[float]) -> ComponentScore:
    """Score how consistent weekly throughput has been (0-100)."""
    if len(values) < MIN_VELOCITY_SAMPLES:
        return ComponentScore(
            score=0,
            level="insufficient_data",
            message=f"Need at least {MIN_VELOCITY_SAMPLES} weeks of data to assess velocity stability",
            details={"sample_size": len(values), "coefficient_of_variation": None, "trend": None},
        )

    v = np.asarray(values, dtype=float)
    mean = float(np.mean(v))
    std = float(np.std(v))  # population
    cv = float(st.variation(v)) * 100 if mean > 0 else 0.0

    half = v.size // 2
    first_avg = float(np.mean(v[:half]))
    second_avg = float(np.mean(v[half:]))
    if second_avg < first_avg:
        trend = "declining"
    elif second_avg > first_avg:
        trend = "improving"
    else:
        trend = "stable"

    score, level = _velocity_band(cv)
    if trend == "declining":
        score = max(20, score - 15)

    message = _VELOCITY_MESSAGES[level].format(cv=round(cv))
    if trend == "improving":
        message += " Trend shows improvement - velocity is increasing."
    elif trend == "declining":
        message += " Trend shows decline - investigate and address issues affecting team capacity."

    return ComponentScore(
        score=score,
        level=level,
        message=message,
        details={
            "sample_size": int(v.size),
            "mean": round(mean, 1),
            "std_dev": round(std, 1),
            "coefficient_of_variation": round(cv),
            "trend": trend,
            "min": float(np.min(v)),
            "max": float(np.max(v)),
        },
    )


def analyze_estimation_confidence(estimation: EstimationOutcome | None) -> ComponentScore:
    """Score how well declared sizes track actual effort (0-100)."""
    if estimation is None or estimation.insufficient:
        return ComponentScore(
            score=50,
            level="insufficient_data",
            message="Need more completed issues with estimates to assess accuracy",
            details={
                "sample_size": estimation.sample_size if estimation is not None else 0,
                "bias_score": None,
            },
        )

    bias_score = estimation.bias.score
    high_variability = estimation.high_variability_count()
    bias_warnings = estimation.bias_warning_count()

    score, level = _estimation_band(bias_score)
    if high_variability > 2:
        score = max(20, score - 20)
    if bias_warnings > 1:
        score = max(30, score - 25)

    message = _ESTIMATION_MESSAGES[level].format(
        bias=bias_score,
        direction="overestimate" if bias_score < 100 else "underestimate",
    )
    if high_variability > 0:
        message += f" Note: {high_variability} point value(s) show high variability in how long they take."

    return ComponentScore(
        score=score,
        level=level,
        message=message,
        details={
            "sample_size": estimation.sample_size,
            "bias_score": bias_score,
            "bias_type": estimation.bias.type,
            "high_variability_count": high_variability,
        },
    )


@dataclass
class ConfidenceScorer:
    """Combines velocity stability and estimation calibration into a planning recommendation."""

    metric: ThroughputMetric = ThroughputMetric.POINTS

    def assess(
        self,
        samples: Sequence[WeeklyThroughputSample],
        estimation: EstimationOutcome | None,
        forecast: ForecastResult | None = None,
    ) -> ConfidenceAssessment:
        velocity = analyze_velocity_stability([s.value(self.metric) for s in samples])
        calibration = analyze_estimation_confidence(estimation)

        combined = (velocity.score + calibration.score) / 2
        choice = recommend_percentile(combined)
        percentiles: dict[str, int] = {}
        if forecast is not None:
            percentiles = {"p50": forecast.p50, "p80": forecast.p80, "p95": forecast.p95}

        recommendation = PercentileRecommendation(
            percentile=choice,
            confidence_score=round_half_up(combined),
            rationale=_RATIONALES[choice],
            velocity_score=velocity.score,
            estimation_score=calibration.score,
            percentiles=percentiles,
        )
        confidence = min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, round_half_up(combined)))
        logger.info(
            "Confidence %d%% (velocity=%d, estimation=%d) -> %s",
            confidence,
            velocity.score,
            calibration.score,
            choice,
        )
        return ConfidenceAssessment(
            velocity_stability=velocity,
            estimation_confidence=calibration,
            recommendation=recommendation,
            confidence=confidence,
        )
