from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    Task,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from backlog_forecast.forecasting.domain.models import ForecastResult, ProgressCallback


class TrialRateColumn(ProgressColumn):
    def render(self, task: Task) -> Text:
        if not task.speed:
            return Text("-- trials/s", style="dim")
        return Text(f"{task.speed:,.0f} trials/s", style="cyan")


@dataclass(frozen=True)
class ForecastUi:
    """Console output for long-running forecasts; everything goes to stderr."""

    console: Console
    progress: Progress

    def log(self, message: str) -> None:
        self.console.print(message)

    def trial_callback(self, description: str = "Simulating") -> ProgressCallback:
        """An ``on_progress`` callback that creates its bar on the first report."""
        task: dict[str, TaskID] = {}

        def on_progress(completed: int, total: int, elapsed: float) -> None:
            if "id" not in task:
                task["id"] = self.progress.add_task(description, total=total)
            self.progress.update(task["id"], completed=completed, total=total)

        return on_progress

    def show_forecast(self, result: ForecastResult) -> None:
        table = Table(title=f"{result.remaining_work:g} remaining, {result.sample_count:,} trials")
        table.add_column("Percentile")
        table.add_column("Weeks", justify="right")
        for label, weeks in (("P50", result.p50), ("P80", result.p80), ("P95", result.p95)):
            table.add_row(label, str(weeks))
        self.console.print(table)
        if result.saturated:
            self.log(
                f"[yellow]{result.saturated_trials} trials hit the {result.week_cap}-week cap; "
                "P95 is a lower bound[/yellow]"
            )


@contextmanager
def progress_ui(console: Console | None = None) -> Iterator[ForecastUi]:
    console = console or Console(stderr=True)
    progress = Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TrialRateColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    with progress:
        yield ForecastUi(console=console, progress=progress)
