from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from typer.testing import CliRunner

from backlog_forecast.cli import app
from backlog_forecast.forecasting.domain.models import WorkItem

runner = CliRunner()


def test_demo_prints_percentiles() -> None:
    result = runner.invoke(app, ["demo", "--samples", "2000"])

    assert result.exit_code == 0, result.output
    assert "P50=" in result.stdout
    assert "weeks" in result.stdout


def test_simulate_prints_json() -> None:
    result = runner.invoke(app, ["simulate", "85", "18,24,21,32,20,25,19,28,22,16,26,21", "--seed", "demo"])

    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert 3 <= body["p50"] <= 4
    assert body["seed"] == "demo"


def test_simulate_without_history_fails() -> None:
    result = runner.invoke(app, ["simulate", "85", ""])

    assert result.exit_code == 1


def test_forecast_writes_report(tmp_path: Path, snapshot_items: list[WorkItem], now: datetime) -> None:
    items_path = tmp_path / "items.json"
    items_path.write_text(
        json.dumps(
            {
                "now": now.isoformat(),
                "items": [
                    {
                        "id": w.work_item_id,
                        "status": w.status.value,
                        "size": w.size,
                        "created_at": w.created_at.isoformat() if w.created_at else None,
                        "completed_at": w.completed_at.isoformat() if w.completed_at else None,
                    }
                    for w in snapshot_items
                ],
            }
        )
    )
    out_path = tmp_path / "report.json"

    result = runner.invoke(app, ["forecast", str(items_path), "--samples", "1000", "--output", str(out_path)])

    assert result.exit_code == 0, result.output
    report = json.loads(out_path.read_text())
    assert report["remaining"]["amount"] == 85.0
    assert report["forecast"]["sample_count"] == 1000
    assert len(report["weekly_samples"]) == 12


def test_init_config_writes_template(tmp_path: Path) -> None:
    target = tmp_path / "forecast_config.toml"

    result = runner.invoke(app, ["init-config", str(target)])

    assert result.exit_code == 0, result.output
    assert "[simulation]" in target.read_text()

    again = runner.invoke(app, ["init-config", str(target)])
    assert again.exit_code != 0


def test_init_config_fills_in_options_and_overwrites_with_force(tmp_path: Path) -> None:
    target = tmp_path / "forecast_config.toml"
    target.write_text("# stale\n")

    result = runner.invoke(app, ["init-config", str(target), "--samples", "2500", "--workers", "2", "--force"])

    assert result.exit_code == 0, result.output
    text = target.read_text()
    assert "sample_count = 2500" in text
    assert "workers = 2" in text
    assert "# stale" not in text


def test_init_config_rejects_invalid_values(tmp_path: Path) -> None:
    target = tmp_path / "forecast_config.toml"

    result = runner.invoke(app, ["init-config", str(target), "--samples", "0"])

    assert result.exit_code != 0
    assert not target.exists()
