from __future__ import annotations

from datetime import date, datetime

import pytest

from backlog_forecast.config import ForecastConfig, SimulationConfig
from backlog_forecast.forecasting.domain.errors import InvalidInputError
from backlog_forecast.forecasting.domain.models import (
    ThroughputMetric,
    WeeklyThroughputSample,
    WorkItem,
    WorkItemStatus,
)
from backlog_forecast.forecasting.scenarios.scenarios import (
    CapacityMultiplierScenario,
    CompositeScenario,
    EstimateOverrideScenario,
    IdentityScenario,
    ScopeChangeScenario,
)
from backlog_forecast.forecasting.services.forecasting_service import ForecastingService


def _samples() -> list[WeeklyThroughputSample]:
    return [
        WeeklyThroughputSample(week_start=date(2025, 3, 3), items_completed=2, points_completed=10.0),
        WeeklyThroughputSample(week_start=date(2025, 3, 10), items_completed=4, points_completed=20.0),
        WeeklyThroughputSample(week_start=date(2025, 3, 17), items_completed=3, points_completed=12.0),
    ]


def test_identity_scenario_changes_nothing(backlog: list[WorkItem]) -> None:
    sc = IdentityScenario()

    assert sc.scenario_id == "baseline"
    assert sc.apply_work_items(backlog) == backlog
    assert sc.apply_throughput(_samples(), ThroughputMetric.ITEMS) == [2.0, 4.0, 3.0]


def test_scope_change_removes_and_adds_unstarted_items(backlog: list[WorkItem]) -> None:
    late = WorkItem(
        work_item_id="NEW-1",
        status=WorkItemStatus.DONE,
        size=13.0,
        completed_at=datetime(2025, 3, 20),
    )
    sc = ScopeChangeScenario("late-feature", removed_ids=frozenset({"TODO-3"}), added=(late,))

    out = sc.apply_work_items(backlog)

    ids = [w.work_item_id for w in out]
    assert "TODO-3" not in ids
    assert ids[-1] == "NEW-1"
    assert out[-1].status == WorkItemStatus.TODO
    assert out[-1].completed_at is None
    assert len(backlog) == 9  # input untouched


def test_estimate_override_replaces_sizes(backlog: list[WorkItem]) -> None:
    sc = EstimateOverrideScenario("re-estimate", sizes={"TODO-3": 8})

    out = {w.work_item_id: w for w in sc.apply_work_items(backlog)}

    assert out["TODO-3"].size == 8.0
    assert out["TODO-4"].size == 13.0


def test_capacity_multiplier_scales_weeks_in_range() -> None:
    sc = CapacityMultiplierScenario("holidays", multiplier=0.5, start=date(2025, 3, 10), end=date(2025, 3, 16))

    assert sc.apply_throughput(_samples(), ThroughputMetric.POINTS) == [10.0, 10.0, 12.0]


def test_capacity_multiplier_must_be_non_negative() -> None:
    with pytest.raises(InvalidInputError):
        CapacityMultiplierScenario("broken", multiplier=-0.1)


def test_compare_scenarios_reports_deltas_against_baseline(snapshot_items: list[WorkItem], now: datetime) -> None:
    service = ForecastingService(config=ForecastConfig(simulation=SimulationConfig(sample_count=2000)))
    extra = WorkItem(work_item_id="NEW-1", status=WorkItemStatus.TODO, size=40.0)
    shrink = {f"TODO-{i}": 1.0 for i in range(9)}

    results = service.compare_scenarios(
        snapshot_items,
        [
            ScopeChangeScenario("scope+40", added=(extra,)),
            CapacityMultiplierScenario("half-staff", multiplier=0.5),
            EstimateOverrideScenario("tiny", sizes=shrink),
        ],
        now=now,
    ).unwrap()

    assert list(results) == ["baseline", "scope+40", "half-staff", "tiny"]
    baseline = results["baseline"]
    assert (baseline.delta_p50, baseline.delta_p80, baseline.delta_p95) == (0, 0, 0)
    assert results["scope+40"].remaining.amount == 125.0
    assert results["scope+40"].delta_p50 > 0
    assert results["half-staff"].delta_p50 > 0
    assert results["tiny"].remaining.amount == 9.0
    assert results["tiny"].delta_p50 < 0
    assert results["tiny"].forecast.seed.endswith("_tiny")


def _release_plan() -> CompositeScenario:
    late = WorkItem(work_item_id="NEW-1", status=WorkItemStatus.TODO, size=13.0, team="payments")
    return CompositeScenario(
        "release-plan",
        parts=(
            EstimateOverrideScenario("re-estimate", sizes={"NEW-1": 5.0}),
            CapacityMultiplierScenario("holidays", multiplier=0.5, start=date(2025, 3, 10), end=date(2025, 3, 16)),
            ScopeChangeScenario("swap", removed_ids=frozenset({"TODO-3"}), added=(late,)),
            CapacityMultiplierScenario("sick-leave", multiplier=0.5, start=date(2025, 3, 10)),
        ),
    )


def test_composite_applies_removals_then_additions_then_overrides(backlog: list[WorkItem]) -> None:
    out = {w.work_item_id: w for w in _release_plan().apply_work_items(backlog)}

    assert "TODO-3" not in out
    assert out["NEW-1"].size == 5.0  # override listed first still resizes the added item
    assert out["NEW-1"].team == "payments"
    assert sum(w.size for w in out.values()) == 85.0 - 21.0 + 5.0


def test_composite_capacity_multipliers_compound() -> None:
    assert _release_plan().apply_throughput(_samples(), ThroughputMetric.POINTS) == [10.0, 5.0, 6.0]


def test_change_summaries_count_each_kind() -> None:
    assert IdentityScenario().change_summary() == {}
    assert ScopeChangeScenario("drop", removed_ids=frozenset({"A", "B"})).change_summary() == {"scope_remove": 2}
    assert _release_plan().change_summary() == {
        "estimate_override": 1,
        "capacity_multiplier": 2,
        "scope_remove": 1,
        "scope_add": 1,
    }


def test_compare_scenarios_includes_composite(snapshot_items: list[WorkItem], now: datetime) -> None:
    service = ForecastingService(config=ForecastConfig(simulation=SimulationConfig(sample_count=2000)))

    results = service.compare_scenarios(snapshot_items, [_release_plan()], now=now).unwrap()

    plan = results["release-plan"]
    assert plan.remaining.amount == 69.0
    assert plan.changes == {"estimate_override": 1, "capacity_multiplier": 2, "scope_remove": 1, "scope_add": 1}
    assert results["baseline"].changes == {}
    assert plan.forecast.seed.endswith("_release-plan")
