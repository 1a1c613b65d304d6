from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Sequence

from backlog_forecast.common.seeding import snapshot_id
from backlog_forecast.common.time_utils import as_utc
from backlog_forecast.confidence.scoring import ConfidenceAssessment, ConfidenceScorer
from backlog_forecast.config import ForecastConfig
from backlog_forecast.estimation.accuracy import EstimationAccuracyAnalyzer, EstimationOutcome
from backlog_forecast.forecasting.domain.errors import FailureKind, ForecastingError, Outcome
from backlog_forecast.forecasting.domain.models import (
    CancelCheck,
    ForecastResult,
    ProgressCallback,
    RemainingWork,
    ThroughputMetric,
    WeeklyThroughputSample,
    WorkItem,
)
from backlog_forecast.forecasting.priors.throughput import (
    aggregate_weekly_throughput,
    completed_in_window,
    summarize_remaining_work,
    throughput_values,
)
from backlog_forecast.forecasting.scenarios.scenarios import IdentityScenario, Scenario
from backlog_forecast.forecasting.simulator.monte_carlo import MonteCarloCompletionForecaster


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotReport:
    """Everything the engine derives from one item snapshot."""

    snapshot_id: str
    now: datetime
    weekly_samples: tuple[WeeklyThroughputSample, ...]
    remaining: RemainingWork
    forecast: Outcome[ForecastResult]
    estimation: EstimationOutcome
    confidence: ConfidenceAssessment


@dataclass(frozen=True)
class ScenarioForecast:
    scenario_id: str
    remaining: RemainingWork
    forecast: ForecastResult
    delta_p50: int = 0
    delta_p80: int = 0
    delta_p95: int = 0
    changes: Mapping[str, int] = field(default_factory=dict)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class ForecastingService:
    """Stateless facade over the forecasting pipeline.

    Every public method returns an ``Outcome``; insufficient data and invalid
    input come back as tagged failures instead of exceptions.
    """

    config: ForecastConfig = field(default_factory=ForecastConfig)
    forecaster: MonteCarloCompletionForecaster | None = None
    analyzer: EstimationAccuracyAnalyzer | None = None

    def __post_init__(self) -> None:
        if self.forecaster is None:
            self.forecaster = MonteCarloCompletionForecaster(workers=self.config.simulation.workers)
        if self.analyzer is None:
            est = self.config.estimation
            self.analyzer = EstimationAccuracyAnalyzer(
                min_samples=est.min_samples,
                high_variability_pct=est.high_variability_pct,
                high_variability_min_count=est.high_variability_min_count,
                slow_factor=est.slow_factor,
            )

    # --- Single operations --------------------------------------------------

    def aggregate(
        self,
        items: Sequence[WorkItem],
        now: datetime | None = None,
        lookback_weeks: int | None = None,
    ) -> Outcome[tuple[WeeklyThroughputSample, ...]]:
        weeks = lookback_weeks if lookback_weeks is not None else self.config.aggregation.lookback_weeks
        try:
            return Outcome.success(aggregate_weekly_throughput(items, now or _utc_now(), weeks))
        except ForecastingError as exc:
            logger.warning("Aggregation rejected: %s", exc)
            return Outcome.failed(exc)

    def forecast(
        self,
        remaining_work: float,
        throughput: Sequence[float],
        seed: str,
        sample_count: int | None = None,
        week_cap: int | None = None,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> Outcome[ForecastResult]:
        assert self.forecaster is not None
        sim = self.config.simulation
        try:
            result = self.forecaster.forecast(
                remaining_work=remaining_work,
                throughput=throughput,
                seed=seed,
                sample_count=sample_count if sample_count is not None else sim.sample_count,
                week_cap=week_cap if week_cap is not None else sim.week_cap,
                on_progress=on_progress,
                should_cancel=should_cancel,
            )
        except ForecastingError as exc:
            logger.info("Forecast not computed: %s", exc)
            return Outcome.failed(exc)
        return Outcome.success(result)

    def estimate(self, completed_items: Sequence[WorkItem]) -> Outcome[EstimationOutcome]:
        assert self.analyzer is not None
        try:
            return Outcome.success(self.analyzer.analyze(completed_items))
        except ForecastingError as exc:
            return Outcome.failed(exc)

    def assess(
        self,
        samples: Sequence[WeeklyThroughputSample],
        estimation: EstimationOutcome | None,
        forecast: ForecastResult | None = None,
        metric: ThroughputMetric = ThroughputMetric.POINTS,
    ) -> Outcome[ConfidenceAssessment]:
        return Outcome.success(ConfidenceScorer(metric=metric).assess(samples, estimation, forecast))

    # --- Pipeline -----------------------------------------------------------

    def run_snapshot(
        self,
        items: Sequence[WorkItem],
        now: datetime | None = None,
        seed: str | None = None,
        sample_count: int | None = None,
        week_cap: int | None = None,
        lookback_weeks: int | None = None,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck | None = None,
    ) -> Outcome[SnapshotReport]:
        """Aggregate, simulate, analyse and score one snapshot of items."""
        assert self.analyzer is not None
        now = as_utc(now) if now is not None else _utc_now()
        weeks = lookback_weeks if lookback_weeks is not None else self.config.aggregation.lookback_weeks
        sid = snapshot_id(it.work_item_id for it in items)

        try:
            samples = aggregate_weekly_throughput(items, now, weeks)
            completed = completed_in_window(items, now, weeks)
        except ForecastingError as exc:
            return Outcome.failed(exc)

        remaining = summarize_remaining_work(items)
        metric = remaining.metric
        logger.info(
            "Snapshot %s: %d weekly samples, %.1f %s remaining",
            sid,
            len(samples),
            remaining.amount,
            metric.value,
        )

        forecast = self.forecast(
            remaining_work=remaining.amount,
            throughput=throughput_values(samples, metric),
            seed=seed or sid,
            sample_count=sample_count,
            week_cap=week_cap,
            on_progress=on_progress,
            should_cancel=should_cancel,
        )
        # Missing history still yields a report; bad parameters or a cancel do not.
        if forecast.failure is not None and forecast.failure.kind != FailureKind.INSUFFICIENT_DATA:
            return Outcome(failure=forecast.failure)

        estimation = self.analyzer.analyze(completed)
        confidence = ConfidenceScorer(metric=metric).assess(samples, estimation, forecast.value)

        return Outcome.success(
            SnapshotReport(
                snapshot_id=sid,
                now=now,
                weekly_samples=samples,
                remaining=remaining,
                forecast=forecast,
                estimation=estimation,
                confidence=confidence,
            )
        )

    def compare_scenarios(
        self,
        items: Sequence[WorkItem],
        scenarios: Sequence[Scenario],
        now: datetime | None = None,
        seed: str | None = None,
        sample_count: int | None = None,
    ) -> Outcome[dict[str, ScenarioForecast]]:
        """Forecast the baseline and each what-if scenario over the same history."""
        now = as_utc(now) if now is not None else _utc_now()
        base_seed = seed or snapshot_id(it.work_item_id for it in items)
        samples_out = self.aggregate(items, now)
        if samples_out.failure is not None:
            return Outcome(failure=samples_out.failure)
        samples = samples_out.value or ()

        results: dict[str, ScenarioForecast] = {}
        baseline: ForecastResult | None = None
        for sc in [IdentityScenario(), *scenarios]:
            try:
                remaining = summarize_remaining_work(sc.apply_work_items(items))
                throughput = sc.apply_throughput(samples, remaining.metric)
            except ForecastingError as exc:
                logger.warning("Scenario %s rejected: %s", sc.scenario_id, exc)
                return Outcome.failed(exc)
            run_seed = base_seed if baseline is None else f"{base_seed}_{sc.scenario_id}"
            out = self.forecast(
                remaining_work=remaining.amount,
                throughput=throughput,
                seed=run_seed,
                sample_count=sample_count,
            )
            if out.failure is not None:
                return Outcome(failure=out.failure)
            res = out.unwrap()
            if baseline is None:
                baseline = res
            results[sc.scenario_id] = ScenarioForecast(
                scenario_id=sc.scenario_id,
                remaining=remaining,
                forecast=res,
                delta_p50=res.p50 - baseline.p50,
                delta_p80=res.p80 - baseline.p80,
                delta_p95=res.p95 - baseline.p95,
                changes=sc.change_summary(),
            )
        return Outcome.success(results)
