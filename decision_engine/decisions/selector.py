from __future__ import annotations

import math
from collections.abc import Mapping, Sequence

import numpy as np


class NoCandidatesError(ValueError):
    """Raised when there is nothing to select from."""


def _clean_weight(value: float | None) -> float:
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def select(
    candidates: Sequence[str],
    weights: Mapping[str, float],
    rng: np.random.Generator | None = None,
) -> str:
    """
    Draw one candidate with probability proportional to its weight.

    Missing, negative and non-finite weights count as zero.  When every weight
    is zero the draw is uniform, so a non-empty candidate list always yields
    a choice.
    """
    if not candidates:
        raise NoCandidatesError("No candidates to select from")

    rng = rng or np.random.default_rng()
    w = np.array([_clean_weight(weights.get(c)) for c in candidates], dtype=float)
    total = float(w.sum())

    if total <= 0.0:
        return candidates[int(rng.integers(len(candidates)))]

    cumulative = np.cumsum(w)
    draw = rng.random() * total
    # First index whose cumulative weight exceeds the draw
    idx = int(np.searchsorted(cumulative, draw, side="right"))
    return candidates[min(idx, len(candidates) - 1)]
