"""
Scalar easing helpers shared by the state resolver, the budget mapper and the
fragment memory. All functions are pure and total over finite floats.
"""

from __future__ import annotations

import math


def clamp(low: float, high: float, value: float) -> float:
    return max(low, min(high, value))


def clamp01(value: float) -> float:
    return clamp(0.0, 1.0, value)


def lerp(start: float, end: float, t: float) -> float:
    return start + (end - start) * t


def smoothstep(edge0: float, edge1: float, value: float) -> float:
    """Cubic Hermite ease between ``edge0`` and ``edge1``."""
    t = clamp01((value - edge0) / (edge1 - edge0))
    return t * t * (3.0 - 2.0 * t)


def pow_ease(value: float, gamma: float) -> float:
    """Power-law ease on the clamped input."""
    return math.pow(clamp01(value), gamma)


def sigmoid(value: float) -> float:
    # Split on sign so large magnitudes never overflow exp().
    if value >= 0:
        return 1.0 / (1.0 + math.exp(-value))
    exp_value = math.exp(value)
    return exp_value / (1.0 + exp_value)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties toward positive infinity."""
    return int(math.floor(value + 0.5))
