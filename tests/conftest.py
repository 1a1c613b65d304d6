from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backlog_forecast.cli import DEMO_THROUGHPUT
from backlog_forecast.forecasting.domain.models import WorkItem, WorkItemStatus

NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)  # a Monday


def _history_items(throughput) -> list[WorkItem]:
    """One done item per week, sized to that week's throughput.

    Cycle time is a quarter day per point, so size tracks effort exactly.
    """
    first_wednesday = datetime(2025, 1, 8, 10, 0, tzinfo=timezone.utc)
    items = []
    for i, points in enumerate(throughput):
        done = first_wednesday + timedelta(weeks=i)
        items.append(
            WorkItem(
                work_item_id=f"DONE-{i}",
                status=WorkItemStatus.DONE,
                size=points,
                created_at=done - timedelta(days=points * 0.25),
                completed_at=done,
            )
        )
    return items


def _backlog_items() -> list[WorkItem]:
    sizes = (5, 8, 13, 21, 13, 8, 5, 8, 4)  # 85 points
    return [
        WorkItem(
            work_item_id=f"TODO-{i}",
            status=WorkItemStatus.IN_PROGRESS if i == 0 else WorkItemStatus.TODO,
            size=float(s),
        )
        for i, s in enumerate(sizes)
    ]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def demo_throughput() -> tuple[float, ...]:
    return DEMO_THROUGHPUT


@pytest.fixture
def history() -> list[WorkItem]:
    return _history_items(DEMO_THROUGHPUT)


@pytest.fixture
def backlog() -> list[WorkItem]:
    return _backlog_items()


@pytest.fixture
def snapshot_items(history: list[WorkItem], backlog: list[WorkItem]) -> list[WorkItem]:
    return history + backlog
