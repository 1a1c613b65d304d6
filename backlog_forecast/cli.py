from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from backlog_forecast.adapters.items_json import load_item_snapshot
from backlog_forecast.api.schemas import ForecastResponse, snapshot_to_model
from backlog_forecast.common.logging_config import configure_logging
from backlog_forecast.common.progress_ui import progress_ui
from backlog_forecast.common.time_utils import parse_iso8601
from backlog_forecast.config import ForecastConfig, render_example_config
from backlog_forecast.forecasting.domain.errors import ForecastingError
from backlog_forecast.forecasting.services.forecasting_service import ForecastingService


app = typer.Typer(add_completion=False)

DEMO_THROUGHPUT = (18.0, 24.0, 21.0, 32.0, 20.0, 25.0, 19.0, 28.0, 22.0, 16.0, 26.0, 21.0)


def _load_config(path: str | None) -> ForecastConfig:
    if path is None:
        return ForecastConfig()
    return ForecastConfig.load(Path(path))


@app.command()
def demo(
    remaining: float = typer.Option(85.0, help="Remaining story points"),
    seed: str = typer.Option("demo", help="Seed string for the simulation"),
    samples: int = typer.Option(10_000, help="Number of Monte Carlo trials"),
) -> None:
    """Forecast a demo backlog against twelve weeks of sample throughput."""
    configure_logging(logging.INFO)
    service = ForecastingService()

    outcome = service.forecast(remaining_work=remaining, throughput=DEMO_THROUGHPUT, seed=seed, sample_count=samples)
    if outcome.failure is not None:
        typer.echo(f"{outcome.failure.kind.value}: {outcome.failure.message}", err=True)
        raise typer.Exit(code=1)
    res = outcome.unwrap()

    typer.echo(f"Throughput history: {', '.join(f'{v:g}' for v in DEMO_THROUGHPUT)} points/week")
    typer.echo(f"P50={res.p50} P80={res.p80} P95={res.p95} weeks (mean {res.mean_weeks:.2f})")
    for b in res.histogram:
        typer.echo(f"  {b.weeks:>3} weeks  {b.probability:6.1%}  {'#' * max(1, int(b.probability * 50))}")


@app.command()
def forecast(
    items: str = typer.Argument(..., help="JSON file with already-fetched work items"),
    config: Optional[str] = typer.Option(None, help="Path to forecast_config.toml"),
    now: Optional[str] = typer.Option(None, help="Reference time (ISO-8601); defaults to the file's or now"),
    seed: Optional[str] = typer.Option(None, help="Seed string; defaults to the snapshot id"),
    samples: Optional[int] = typer.Option(None, help="Override simulation.sample_count"),
    output: Optional[str] = typer.Option(None, help="Write the JSON report here instead of stdout"),
) -> None:
    """Run the full pipeline (aggregate, simulate, calibrate, score) on an item snapshot."""
    cfg = _load_config(config)
    log_path = configure_logging(cfg.logging.level, cfg.logging.log_dir)

    try:
        snapshot = load_item_snapshot(Path(items))
        ref: datetime | None = parse_iso8601(now) if now else snapshot.now
    except (ForecastingError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    service = ForecastingService(config=cfg)
    with progress_ui() as ui:
        if log_path is not None:
            ui.log(f"[dim]Debug log: {log_path}[/dim]")
        outcome = service.run_snapshot(
            snapshot.items,
            now=ref,
            seed=seed,
            sample_count=samples,
            on_progress=ui.trial_callback("Simulating futures"),
        )
        if outcome.failure is not None:
            ui.log(f"[red]{outcome.failure.kind.value}: {outcome.failure.message}[/red]")
            raise typer.Exit(code=1)
        report = outcome.unwrap()

        if report.forecast.failure is not None:
            ui.log(f"[yellow]No forecast: {report.forecast.failure.message}[/yellow]")
        else:
            ui.show_forecast(report.forecast.unwrap())
        rec = report.confidence.recommendation
        ui.log(f"Recommended baseline: {rec.percentile} (confidence {report.confidence.confidence}%)")

    payload = json.dumps(snapshot_to_model(report).model_dump(mode="json"), indent=2)
    if output:
        Path(output).expanduser().write_text(payload, encoding="utf-8")
        typer.echo(f"Wrote {output}")
    else:
        typer.echo(payload)


@app.command()
def simulate(
    remaining: float = typer.Argument(..., help="Remaining work (points or items)"),
    throughput: str = typer.Argument(..., help="Comma-separated weekly throughput values"),
    seed: str = typer.Option("cli", help="Seed string for the simulation"),
    samples: int = typer.Option(10_000, help="Number of Monte Carlo trials"),
    week_cap: int = typer.Option(104, help="Weeks after which a trial reports the cap"),
) -> None:
    """Run the simulator alone and print the forecast as JSON."""
    configure_logging(logging.WARNING)
    try:
        values = [float(v) for v in throughput.split(",") if v.strip()]
    except ValueError as exc:
        raise typer.BadParameter(f"throughput must be numbers: {exc}") from exc

    outcome = ForecastingService().forecast(
        remaining_work=remaining,
        throughput=values,
        seed=seed,
        sample_count=samples,
        week_cap=week_cap,
    )
    if outcome.failure is not None:
        typer.echo(f"{outcome.failure.kind.value}: {outcome.failure.message}", err=True)
        raise typer.Exit(code=1)
    typer.echo(ForecastResponse.model_validate(outcome.unwrap()).model_dump_json(indent=2))


@app.command()
def init_config(
    path: str = typer.Argument("forecast_config.toml", help="Where to write the configuration"),
    lookback_weeks: Optional[int] = typer.Option(None, help="Weeks of history to aggregate"),
    samples: Optional[int] = typer.Option(None, help="Monte Carlo trials per forecast"),
    workers: Optional[int] = typer.Option(None, help="Threads used for trial blocks"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a forecast_config.toml, optionally with some values filled in."""
    out = Path(path).expanduser()
    if out.exists() and not force:
        raise typer.BadParameter(f"{out} exists; pass --force to replace it")

    try:
        text = render_example_config(lookback_weeks=lookback_weeks, sample_count=samples, workers=workers)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    out.write_text(text, encoding="utf-8")
    typer.echo(f"Wrote {out}; run: backlog-forecast forecast items.json --config {out}")
