from __future__ import annotations

from collections import Counter
from typing import Any


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    created = [e for e in events if e["type"] == "decision_created"]
    resolved = [e for e in events if e["type"] == "decision_resolved"]
    ballots = [e for e in events if e["type"] == "ballot_submitted"]
    expired = [e for e in events if e["type"] == "decision_expired"]
    resets = [e for e in events if e["type"] == "weights_reset"]

    # Decisions by method and kind
    method_counter: Counter[str] = Counter(e.get("method", "unknown") for e in created)
    kind_counter: Counter[str] = Counter(e.get("kind", "unknown") for e in created)

    # How resolutions were triggered
    trigger_counter: Counter[str] = Counter(e.get("trigger", "unknown") for e in resolved)

    # Random fallbacks for tiered decisions with no countable ballots
    tiered_resolved = [e for e in resolved if e.get("method") == "tiered"]
    fallbacks = sum(1 for e in tiered_resolved if e.get("fallback"))
    fallback_rate = (
        round(fallbacks / len(tiered_resolved) * 100, 1) if tiered_resolved else 0.0
    )

    # Ballots per tiered decision (replacements count once per decision/user)
    voters_by_decision: dict[str, set[str]] = {}
    for b in ballots:
        voters_by_decision.setdefault(b["decision_id"], set()).add(b.get("user_id", ""))
    avg_ballots = (
        round(sum(len(v) for v in voters_by_decision.values()) / len(voters_by_decision), 1)
        if voters_by_decision else 0.0
    )

    # Rounds needed by ranked-choice
    rounds = [e["rounds"] for e in tiered_resolved if e.get("rounds")]
    avg_rounds = round(sum(rounds) / len(rounds), 1) if rounds else 0.0

    # Most picked restaurants
    winner_counter: Counter[str] = Counter(
        e["restaurant_id"] for e in resolved if e.get("restaurant_id")
    )
    top_restaurants = [
        {"restaurant_id": r, "count": c} for r, c in winner_counter.most_common(10)
    ]

    return {
        "total_decisions": len(created),
        "total_resolved": len(resolved),
        "total_expired": len(expired),
        "decisions_by_method": dict(method_counter),
        "decisions_by_kind": dict(kind_counter),
        "resolution_triggers": dict(trigger_counter),
        "tiered_fallback_rate": fallback_rate,
        "avg_ballots_per_tiered_decision": avg_ballots,
        "avg_runoff_rounds": avg_rounds,
        "top_restaurants": top_restaurants,
        "weight_resets": len(resets),
    }
