"""Numeric helpers shared by the evaluator and the replenishment calculator."""

import math

__all__ = ["round_half_up"]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (2.5 -> 3, -2.5 -> -2).

    ``round()`` uses banker's rounding, which would make coverage and percentages
    disagree with the figures shown to staff.
    """
    return math.floor(value + 0.5)
