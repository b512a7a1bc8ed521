"""Basic descriptive statistics over response-time samples."""

from __future__ import annotations

import math
from typing import Sequence


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile: ``sorted[ceil(p/100 * n) - 1]``.

    The index is clamped to the valid range and an empty input yields 0.
    """
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil((p / 100) * len(ordered)) - 1
    index = max(0, min(index, len(ordered) - 1))
    return ordered[index]


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two samples."""
    if len(values) <= 1:
        return 0.0
    avg = mean(values)
    return math.sqrt(mean([(value - avg) ** 2 for value in values]))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def round_to(value: float, digits: int = 2) -> float:
    factor = 10**digits
    return round_half_up(value * factor) / factor
