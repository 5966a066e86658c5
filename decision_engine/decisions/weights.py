from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from .models import Decision, DecisionStatus, Restaurant, WeightSnapshot

logger = logging.getLogger(__name__)

RECOVERY_DAYS = 30
_SECONDS_PER_DAY = 24 * 60 * 60


def _selection_time(decision: Decision, restaurant_id: str) -> datetime | None:
    """Return ``selected_at`` if *decision* picked *restaurant_id*, else None."""
    if decision.status != DecisionStatus.completed or decision.result is None:
        return None
    if str(decision.result.restaurant_id) != str(restaurant_id):
        return None
    selected_at = decision.result.selected_at
    if not isinstance(selected_at, datetime):
        raise TypeError(f"selected_at is {type(selected_at).__name__}, not datetime")
    if selected_at.tzinfo is None:
        raise ValueError("selected_at is not timezone-aware")
    return selected_at


def _selections(
    restaurant_id: str, history: Iterable[Decision]
) -> list[datetime]:
    found: list[datetime] = []
    for decision in history:
        try:
            selected_at = _selection_time(decision, restaurant_id)
        except (AttributeError, TypeError, ValueError):
            logger.warning(
                "Skipping malformed history entry %r for restaurant %s",
                getattr(decision, "id", decision),
                restaurant_id,
                exc_info=True,
            )
            continue
        if selected_at is not None:
            found.append(selected_at)
    return found


def days_since(selected_at: datetime, now: datetime) -> int:
    """Whole days elapsed, floored; negative for future timestamps."""
    return int((now - selected_at).total_seconds() // _SECONDS_PER_DAY)


def weight_for_days(days: int, recovery_days: int = RECOVERY_DAYS) -> float:
    return max(0.0, min(1.0, days / recovery_days))


def days_until_full_weight(
    last_selected: datetime | None,
    now: datetime,
    recovery_days: int = RECOVERY_DAYS,
) -> int:
    if last_selected is None:
        return 0
    # A future timestamp counts as picked today, matching its zero weight
    return min(recovery_days, max(0, recovery_days - days_since(last_selected, now)))


def calculate_weight(
    restaurant_id: str,
    history: Iterable[Decision],
    now: datetime | None = None,
    recovery_days: int = RECOVERY_DAYS,
) -> float:
    """
    Weight in [0, 1] for picking *restaurant_id* again.

    A restaurant never chosen (or whose history was reset) has full weight.
    Otherwise the weight climbs linearly from 0 on the day it was picked to
    1.0 after ``recovery_days`` days.
    """
    now = now or datetime.now(timezone.utc)
    selections = _selections(restaurant_id, history)
    if not selections:
        return 1.0
    return weight_for_days(days_since(max(selections), now), recovery_days)


def calculate_weights(
    restaurant_ids: Sequence[str],
    history: Sequence[Decision],
    now: datetime | None = None,
    recovery_days: int = RECOVERY_DAYS,
) -> dict[str, float]:
    now = now or datetime.now(timezone.utc)
    return {
        rid: calculate_weight(rid, history, now=now, recovery_days=recovery_days)
        for rid in restaurant_ids
    }


def build_weight_snapshots(
    restaurants: Sequence[Restaurant],
    history: Sequence[Decision],
    now: datetime | None = None,
    recovery_days: int = RECOVERY_DAYS,
) -> list[WeightSnapshot]:
    """Per-restaurant weight rows, heaviest first."""
    now = now or datetime.now(timezone.utc)
    snapshots: list[WeightSnapshot] = []
    for restaurant in restaurants:
        selections = _selections(restaurant.id, history)
        last_selected = max(selections) if selections else None
        if last_selected is None:
            weight = 1.0
        else:
            weight = weight_for_days(days_since(last_selected, now), recovery_days)
        snapshots.append(WeightSnapshot(
            restaurant_id=restaurant.id,
            name=restaurant.name,
            current_weight=round(weight, 4),
            selection_count=len(selections),
            last_selected=last_selected,
            days_until_full_weight=days_until_full_weight(last_selected, now, recovery_days),
        ))

    snapshots.sort(key=lambda s: (-s.current_weight, s.name, s.restaurant_id))
    return snapshots
