"""Request/response schemas for the four engine operations.

Each message has exactly one shape; defaults are stated here and nowhere else.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from backlog_forecast.confidence.scoring import PercentileChoice
from backlog_forecast.estimation.accuracy import (
    EstimationBias,
    EstimationOutcome,
    EstimationProfile,
    InsufficientEstimation,
    Recommendation,
    SizeGroupStats,
)
from backlog_forecast.forecasting.domain.errors import FailureKind
from backlog_forecast.forecasting.domain.models import (
    ThroughputMetric,
    WeeklyThroughputSample,
    WorkItem,
    WorkItemStatus,
)
from backlog_forecast.forecasting.services.forecasting_service import SnapshotReport
from backlog_forecast.forecasting.simulator.monte_carlo import DEFAULT_SAMPLE_COUNT, DEFAULT_WEEK_CAP


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class WorkItemIn(BaseModel):
    id: str = Field(..., description="Tracker key, e.g. PROJ-123")
    status: WorkItemStatus
    size: float | None = Field(default=None, description="Story points; null when unestimated")
    created_at: datetime | None = None
    completed_at: datetime | None = Field(default=None, description="Present only for done items")
    summary: str = ""
    assignee: str | None = None
    team: str | None = Field(default=None, description="Reporting only; throughput stays a single team rate")

    def to_domain(self) -> WorkItem:
        return WorkItem(
            work_item_id=self.id,
            status=self.status,
            created_at=self.created_at,
            completed_at=self.completed_at,
            size=self.size,
            summary=self.summary,
            assignee=self.assignee,
            team=self.team,
        )


class WeeklySampleModel(_FromDomain):
    week_start: date
    items_completed: int = Field(..., ge=0)
    points_completed: float = Field(..., ge=0.0)

    def to_domain(self) -> WeeklyThroughputSample:
        return WeeklyThroughputSample(
            week_start=self.week_start,
            items_completed=self.items_completed,
            points_completed=self.points_completed,
        )


class TeamRemainingModel(_FromDomain):
    team: str
    item_count: int
    total_points: float


class RemainingWorkModel(_FromDomain):
    item_count: int
    total_points: float
    unestimated_count: int
    metric: ThroughputMetric
    amount: float
    by_team: list[TeamRemainingModel] = Field(default_factory=list)


class FailureModel(_FromDomain):
    kind: FailureKind
    message: str


# --- Aggregate -------------------------------------------------------------


class AggregateRequest(BaseModel):
    items: list[WorkItemIn]
    now: datetime | None = Field(default=None, description="Defaults to the current UTC time")
    lookback_weeks: int = Field(default=12, gt=0)


class AggregateResponse(BaseModel):
    weekly_samples: list[WeeklySampleModel]
    remaining: RemainingWorkModel


# --- Forecast --------------------------------------------------------------


class ForecastRequest(BaseModel):
    remaining_work: float
    throughput_samples: list[float]
    seed: str
    sample_count: int = Field(default=DEFAULT_SAMPLE_COUNT, gt=0)
    week_cap: int = Field(default=DEFAULT_WEEK_CAP, gt=0)


class HistogramBucketModel(_FromDomain):
    weeks: int
    count: int
    probability: float


class BurnDownPointModel(_FromDomain):
    week: int
    remaining: float


class BurnDownModel(_FromDomain):
    p50: list[BurnDownPointModel]
    p80: list[BurnDownPointModel]


class ThroughputStatsModel(_FromDomain):
    median: float
    mean: float
    p20: float
    p80: float
    min: float
    max: float
    weeks: int


class ForecastResponse(_FromDomain):
    p50: int
    p80: int
    p95: int
    mean_weeks: float
    min_weeks: int
    max_weeks: int
    histogram: list[HistogramBucketModel]
    burn_down: BurnDownModel
    sample_count: int
    throughput_stats: ThroughputStatsModel
    remaining_work: float
    week_cap: int
    saturated_trials: int
    seed: str


# --- Estimation ------------------------------------------------------------


class EstimationRequest(BaseModel):
    completed_items: list[WorkItemIn]


class SizeGroupModel(_FromDomain):
    size: float
    count: int
    avg_cycle_time_days: float
    min_cycle_time_days: float
    max_cycle_time_days: float
    avg_days_per_point: float
    variability: int


class EstimationBiasModel(_FromDomain):
    type: Literal[
        "severe_overestimation",
        "moderate_overestimation",
        "well_calibrated",
        "moderate_underestimation",
        "severe_underestimation",
    ]
    score: int
    linearity: float
    message: str


class RecommendationModel(_FromDomain):
    type: str
    priority: Literal["high", "medium", "info"]
    title: str
    detail: str
    suggested_multiplier: float | None = None
    affected_sizes: list[float] = Field(default_factory=list)


class EstimationProfileModel(_FromDomain):
    insufficient: Literal[False] = False
    sample_size: int
    overall_avg_days_per_point: float
    by_size: list[SizeGroupModel]
    bias: EstimationBiasModel
    recommendations: list[RecommendationModel] = Field(default_factory=list)

    def to_domain(self) -> EstimationProfile:
        return EstimationProfile(
            sample_size=self.sample_size,
            overall_avg_days_per_point=self.overall_avg_days_per_point,
            by_size=tuple(SizeGroupStats(**g.model_dump()) for g in self.by_size),
            bias=EstimationBias(**self.bias.model_dump()),
            recommendations=tuple(
                Recommendation(**{**r.model_dump(), "affected_sizes": tuple(r.affected_sizes)})
                for r in self.recommendations
            ),
        )


class InsufficientEstimationModel(_FromDomain):
    insufficient: Literal[True] = True
    sample_size: int
    min_required: int = 3
    message: str = ""

    def to_domain(self) -> InsufficientEstimation:
        return InsufficientEstimation(
            sample_size=self.sample_size,
            min_required=self.min_required,
            message=self.message,
        )


EstimationResponse = EstimationProfileModel | InsufficientEstimationModel


def estimation_to_model(outcome: EstimationOutcome) -> EstimationResponse:
    if outcome.insufficient:
        return InsufficientEstimationModel.model_validate(outcome)
    return EstimationProfileModel.model_validate(outcome)


# --- Confidence ------------------------------------------------------------


class ConfidenceRequest(BaseModel):
    weekly_samples: list[WeeklySampleModel]
    estimation_profile: EstimationProfileModel | InsufficientEstimationModel | None = None
    metric: ThroughputMetric = ThroughputMetric.POINTS


class ComponentScoreModel(_FromDomain):
    score: int
    level: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class PercentileRecommendationModel(_FromDomain):
    percentile: PercentileChoice
    confidence_score: int
    rationale: str
    velocity_score: int
    estimation_score: int
    percentiles: dict[str, int] = Field(default_factory=dict)


class ConfidenceResponse(_FromDomain):
    velocity_stability: ComponentScoreModel
    estimation_confidence: ComponentScoreModel
    recommendation: PercentileRecommendationModel
    confidence: int


# --- Whole snapshot --------------------------------------------------------


class SnapshotRequest(BaseModel):
    items: list[WorkItemIn]
    now: datetime | None = None
    lookback_weeks: int = Field(default=12, gt=0)
    seed: str | None = Field(default=None, description="Defaults to the snapshot id")
    sample_count: int = Field(default=DEFAULT_SAMPLE_COUNT, gt=0)
    week_cap: int = Field(default=DEFAULT_WEEK_CAP, gt=0)


class SnapshotResponse(BaseModel):
    snapshot_id: str
    now: datetime
    weekly_samples: list[WeeklySampleModel]
    remaining: RemainingWorkModel
    forecast: ForecastResponse | None = None
    forecast_failure: FailureModel | None = None
    estimation: EstimationProfileModel | InsufficientEstimationModel
    confidence: ConfidenceResponse


def snapshot_to_model(report: SnapshotReport) -> SnapshotResponse:
    return SnapshotResponse(
        snapshot_id=report.snapshot_id,
        now=report.now,
        weekly_samples=[WeeklySampleModel.model_validate(s) for s in report.weekly_samples],
        remaining=RemainingWorkModel.model_validate(report.remaining),
        forecast=ForecastResponse.model_validate(report.forecast.value) if report.forecast.ok else None,
        forecast_failure=(
            FailureModel.model_validate(report.forecast.failure) if report.forecast.failure is not None else None
        ),
        estimation=estimation_to_model(report.estimation),
        confidence=ConfidenceResponse.model_validate(report.confidence),
    )
