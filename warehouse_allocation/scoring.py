from __future__ import annotations

import math
from typing import Mapping


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def min_max(value: float, lo: float, hi: float) -> float:
    """Map ``value`` from [lo, hi] onto [0, 1].

    A degenerate range (hi <= lo) maps everything to 1.0: when every candidate
    has the same raw value, none of them is worse than another.
    """
    if hi <= lo:
        return 1.0
    return clamp((value - lo) / (hi - lo))


def inverted_min_max(value: float, lo: float, hi: float) -> float:
    """Like :func:`min_max` but lower raw values score higher (distances)."""
    if hi <= lo:
        return 1.0
    return 1.0 - min_max(value, lo, hi)


def sigmoid(value: float, midpoint: float = 0.0, steepness: float = 1.0) -> float:
    """Logistic squash onto (0, 1), for factors without a known range."""
    z = steepness * (value - midpoint)
    # avoid overflow in exp for large |z|
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def weighted_sum(factors: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """Sum of weight * factor over the weight keys; factors must already be in [0, 1]."""
    total = 0.0
    for name, weight in weights.items():
        value = factors[name]
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"Factor '{name}' must be normalized to [0, 1], got {value}")
        total += weight * value
    return total
