"""
Instant-runoff aggregation for tiered decisions.

Each round counts every ballot once, for its highest-ranked candidate still
in the race.  A candidate with more than half of the counted ballots wins.
Otherwise the weakest candidate is eliminated and the ballots are counted
again.  Ballots whose every choice has been eliminated are exhausted and no
longer counted.

Ties never involve randomness:

* Elimination: fewest votes, then lowest selection weight (keep restaurants
  that were not picked recently), then the lexicographically smallest id.
* Final round: when the last two candidates are level, the higher weight
  wins, then the lexicographically smallest id.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .models import Ballot


@dataclass(frozen=True)
class RoundTally:
    number: int
    counts: dict[str, int]
    counted_ballots: int
    eliminated: str | None = None


@dataclass(frozen=True)
class RankedChoiceOutcome:
    winner: str
    reasoning: str
    rounds: list[RoundTally] = field(default_factory=list)
    elimination_order: list[str] = field(default_factory=list)

    @property
    def final_counts(self) -> dict[str, int]:
        return dict(self.rounds[-1].counts) if self.rounds else {}


def _top_choice(ballot: Ballot, remaining: set[str]) -> str | None:
    for restaurant_id in ballot.rankings:
        if restaurant_id in remaining:
            return restaurant_id
    return None


def _tally(ballots: Sequence[Ballot], remaining: set[str]) -> tuple[dict[str, int], int]:
    counts = {c: 0 for c in remaining}
    counted = 0
    for ballot in ballots:
        choice = _top_choice(ballot, remaining)
        if choice is None:
            continue  # exhausted
        counts[choice] += 1
        counted += 1
    return counts, counted


def resolve(
    ballots: Sequence[Ballot],
    candidates: Sequence[str],
    weights: Mapping[str, float] | None = None,
) -> RankedChoiceOutcome | None:
    """
    Run instant-runoff over *ballots* restricted to *candidates*.

    Returns ``None`` when no ballot ranks any candidate, so the caller can
    fall back to weighted random selection.
    """
    weights = weights or {}

    def weight(c: str) -> float:
        return float(weights.get(c, 1.0))

    candidate_set = set(candidates)
    # A candidate nobody ranked can never receive a vote
    remaining = {
        c for ballot in ballots for c in ballot.rankings if c in candidate_set
    }
    if not remaining:
        return None

    rounds: list[RoundTally] = []
    eliminated: list[str] = []

    while True:
        number = len(rounds) + 1
        counts, counted = _tally(ballots, remaining)

        leader = min(remaining, key=lambda c: (-counts[c], -weight(c), c))
        if counts[leader] * 2 > counted:
            rounds.append(RoundTally(number, counts, counted))
            reasoning = f"Won in round {number} with {counts[leader]}/{counted} votes"
            return RankedChoiceOutcome(leader, reasoning, rounds, eliminated)

        if len(remaining) == 2 and len(set(counts.values())) == 1:
            rounds.append(RoundTally(number, counts, counted))
            reasoning = (
                f"Won a tied final round {number} with {counts[leader]}/{counted} "
                f"votes, tie broken by selection weight {weight(leader):.2f}"
            )
            return RankedChoiceOutcome(leader, reasoning, rounds, eliminated)

        loser = min(remaining, key=lambda c: (counts[c], weight(c), c))
        rounds.append(RoundTally(number, counts, counted, eliminated=loser))
        eliminated.append(loser)
        remaining.discard(loser)
