"""Rounding helpers shared by the analytics modules."""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity (2.5 → 3, -2.5 → -2).

    Python's built-in ``round`` uses banker's rounding (2.5 → 2), which makes
    discount and stock-day figures jump unevenly at .5 boundaries.
    """
    return int(math.floor(value + 0.5))
