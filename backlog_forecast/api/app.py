from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backlog_forecast.api.schemas import (
    AggregateRequest,
    AggregateResponse,
    ConfidenceRequest,
    ConfidenceResponse,
    EstimationProfileModel,
    EstimationRequest,
    FailureModel,
    ForecastRequest,
    ForecastResponse,
    InsufficientEstimationModel,
    RemainingWorkModel,
    SnapshotRequest,
    SnapshotResponse,
    WeeklySampleModel,
    estimation_to_model,
    snapshot_to_model,
)
from backlog_forecast.forecasting.domain.errors import Failure, ForecastingError, Outcome
from backlog_forecast.forecasting.priors.throughput import summarize_remaining_work
from backlog_forecast.forecasting.services.forecasting_service import ForecastingService


class OutcomeFailed(Exception):
    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


def _unwrap(outcome: Outcome):
    if outcome.failure is not None:
        raise OutcomeFailed(outcome.failure)
    return outcome.value


def create_app(service: ForecastingService | None = None) -> FastAPI:
    forecasting = service or ForecastingService()
    app = FastAPI(title="Backlog Forecast")

    @app.exception_handler(OutcomeFailed)
    async def _on_failure(request: Request, exc: OutcomeFailed) -> JSONResponse:
        return JSONResponse(status_code=422, content=FailureModel.model_validate(exc.failure).model_dump(mode="json"))

    @app.exception_handler(ForecastingError)
    async def _on_error(request: Request, exc: ForecastingError) -> JSONResponse:
        # Raised while converting request items, e.g. completion before creation.
        failure = Failure.from_exception(exc)
        return JSONResponse(status_code=422, content=FailureModel.model_validate(failure).model_dump(mode="json"))

    @app.post("/aggregate", response_model=AggregateResponse)
    def aggregate(req: AggregateRequest) -> AggregateResponse:
        items = [it.to_domain() for it in req.items]
        samples = _unwrap(forecasting.aggregate(items, now=req.now, lookback_weeks=req.lookback_weeks))
        return AggregateResponse(
            weekly_samples=[WeeklySampleModel.model_validate(s) for s in samples],
            remaining=RemainingWorkModel.model_validate(summarize_remaining_work(items)),
        )

    @app.post("/forecast", response_model=ForecastResponse)
    def forecast(req: ForecastRequest) -> ForecastResponse:
        result = _unwrap(
            forecasting.forecast(
                remaining_work=req.remaining_work,
                throughput=req.throughput_samples,
                seed=req.seed,
                sample_count=req.sample_count,
                week_cap=req.week_cap,
            )
        )
        return ForecastResponse.model_validate(result)

    @app.post("/estimation", response_model=EstimationProfileModel | InsufficientEstimationModel)
    def estimation(req: EstimationRequest) -> EstimationProfileModel | InsufficientEstimationModel:
        outcome = _unwrap(forecasting.estimate([it.to_domain() for it in req.completed_items]))
        return estimation_to_model(outcome)

    @app.post("/confidence", response_model=ConfidenceResponse)
    def confidence(req: ConfidenceRequest) -> ConfidenceResponse:
        profile = req.estimation_profile.to_domain() if req.estimation_profile is not None else None
        assessment = _unwrap(
            forecasting.assess(
                [s.to_domain() for s in req.weekly_samples],
                profile,
                metric=req.metric,
            )
        )
        return ConfidenceResponse.model_validate(assessment)

    @app.post("/snapshot", response_model=SnapshotResponse)
    def snapshot(req: SnapshotRequest) -> SnapshotResponse:
        report = _unwrap(
            forecasting.run_snapshot(
                [it.to_domain() for it in req.items],
                now=req.now,
                seed=req.seed,
                sample_count=req.sample_count,
                week_cap=req.week_cap,
                lookback_weeks=req.lookback_weeks,
            )
        )
        return snapshot_to_model(report)

    return app
