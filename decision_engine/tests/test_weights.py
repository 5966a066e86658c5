from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from conftest import NOW, completed_decision
from decision_engine.decisions.models import (
    Decision,
    DecisionKind,
    DecisionMethod,
    DecisionResult,
    Restaurant,
)
from decision_engine.decisions.weights import (
    build_weight_snapshots,
    calculate_weight,
    calculate_weights,
    days_until_full_weight,
)


def _picked(restaurant_id: str, days_ago: float) -> Decision:
    return completed_decision("c1", restaurant_id, NOW - timedelta(days=days_ago))


def test_never_selected_has_full_weight():
    assert calculate_weight("A", [], now=NOW) == 1.0
    assert calculate_weight("A", [_picked("B", 1)], now=NOW) == 1.0


def test_selected_today_has_zero_weight():
    assert calculate_weight("A", [_picked("A", 0)], now=NOW) == 0.0


def test_selected_fifteen_days_ago_has_half_weight():
    assert calculate_weight("A", [_picked("A", 15)], now=NOW) == pytest.approx(0.5)


def test_selected_long_ago_has_full_weight():
    assert calculate_weight("A", [_picked("A", 31)], now=NOW) == 1.0
    assert calculate_weight("A", [_picked("A", 400)], now=NOW) == 1.0


def test_partial_days_are_floored():
    # 14.9 days is 14 whole days
    assert calculate_weight("A", [_picked("A", 14.9)], now=NOW) == pytest.approx(14 / 30)


def test_weight_is_monotonic_in_days_since_selection():
    weights = [calculate_weight("A", [_picked("A", d)], now=NOW) for d in range(0, 45)]
    assert weights == sorted(weights)
    assert weights[0] == 0.0
    assert all(w == 1.0 for w in weights[30:])


def test_most_recent_selection_wins():
    history = [_picked("A", 25), _picked("A", 3), _picked("A", 60)]
    assert calculate_weight("A", history, now=NOW) == pytest.approx(3 / 30)


def test_only_completed_decisions_count():
    active = Decision(
        collection_id="c1",
        kind=DecisionKind.personal,
        method=DecisionMethod.random,
        deadline=NOW,
        visit_date=NOW.date(),
        result=None,
    )
    assert calculate_weight("A", [active], now=NOW) == 1.0


def test_future_selection_clamps_to_zero():
    assert calculate_weight("A", [_picked("A", -2)], now=NOW) == 0.0


def test_malformed_entries_are_skipped(caplog):
    naive = completed_decision("c1", "A", datetime(2026, 10, 16, 12, 0))
    broken = completed_decision("c1", "A", NOW)
    broken.result = DecisionResult.model_construct(
        restaurant_id="A", selected_at="yesterday", reasoning="x",
    )
    history = [naive, broken, object(), _picked("A", 15)]

    assert calculate_weight("A", history, now=NOW) == pytest.approx(0.5)
    assert "malformed history entry" in caplog.text


def test_all_malformed_means_full_weight():
    naive = completed_decision("c1", "A", datetime(2026, 10, 16, 12, 0))
    assert calculate_weight("A", [naive], now=NOW) == 1.0


def test_example_collection_weights():
    history = [_picked("A", 5), _picked("B", 40)]
    weights = calculate_weights(["A", "B", "C"], history, now=NOW)
    assert weights["A"] == pytest.approx(0.17, abs=0.01)
    assert weights["B"] == 1.0
    assert weights["C"] == 1.0


def test_days_until_full_weight():
    assert days_until_full_weight(None, NOW) == 0
    assert days_until_full_weight(NOW - timedelta(days=5), NOW) == 25
    assert days_until_full_weight(NOW - timedelta(days=45), NOW) == 0


def test_future_selection_waits_at_most_one_recovery_period():
    assert days_until_full_weight(NOW + timedelta(days=5), NOW) == 30
    assert days_until_full_weight(NOW + timedelta(days=5), NOW, recovery_days=10) == 10

    snapshot = build_weight_snapshots(
        [Restaurant(id="A", name="Alpha")], [_picked("A", -5)], now=NOW,
    )[0]
    assert snapshot.current_weight == 0.0
    assert snapshot.days_until_full_weight == 30


def test_snapshots_sorted_by_weight_descending():
    restaurants = [
        Restaurant(id="A", name="Alpha"),
        Restaurant(id="B", name="Bravo"),
        Restaurant(id="C", name="Charlie"),
    ]
    history = [_picked("A", 5), _picked("A", 20), _picked("C", 12)]
    snapshots = build_weight_snapshots(restaurants, history, now=NOW)

    assert [s.restaurant_id for s in snapshots] == ["B", "C", "A"]
    by_id = {s.restaurant_id: s for s in snapshots}
    assert by_id["A"].selection_count == 2
    assert by_id["A"].days_until_full_weight == 25
    assert by_id["A"].last_selected == NOW - timedelta(days=5)
    assert by_id["B"].last_selected is None
    assert by_id["B"].current_weight == 1.0
    assert by_id["B"].days_until_full_weight == 0


def test_snapshot_wire_format_is_camel_case():
    snapshot = build_weight_snapshots(
        [Restaurant(id="A", name="Alpha")], [_picked("A", 3)], now=NOW,
    )[0]
    wire = snapshot.to_wire()
    assert set(wire) == {
        "restaurantId", "name", "currentWeight", "selectionCount",
        "lastSelected", "daysUntilFullWeight",
    }
    assert isinstance(wire["lastSelected"], str)


def test_result_restaurant_ids_compare_as_strings():
    decision = completed_decision("c1", "42", NOW - timedelta(days=6))
    assert calculate_weight("42", [decision], now=NOW) == pytest.approx(0.2)
