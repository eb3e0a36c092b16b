"""
Trend detection on a short price history.

A trend is confirmed when, among the last `lookback` consecutive price
changes, at least ``ceil(lookback * strength)`` move strictly in the
favourable direction.  With ``strength=1.0`` every step must move;
smaller ratios tolerate a few flat or adverse ticks without breaking
the read.
"""

from __future__ import annotations

import math
from typing import Sequence, Union

from ..execution.models import PricePoint


PriceLike = Union[PricePoint, float, int]


def _price(point: PriceLike) -> float:
    return float(point.price) if isinstance(point, PricePoint) else float(point)


def _favourable_steps(points: Sequence[PriceLike], lookback: int, rising: bool) -> int:
    window = [_price(p) for p in list(points)[-(lookback + 1):]]
    count = 0
    for prev, curr in zip(window, window[1:]):
        if (curr > prev) if rising else (curr < prev):
            count += 1
    return count


def required_steps(lookback: int, strength: float) -> int:
    """Number of favourable steps needed to confirm a trend."""
    return math.ceil(lookback * strength)


def _has_trend(points: Sequence[PriceLike], lookback: int, strength: float, rising: bool) -> bool:
    lookback = int(lookback)
    if lookback < 1 or len(points) < lookback + 1:
        return False
    return _favourable_steps(points, lookback, rising) >= required_steps(lookback, strength)


def has_uptrend(points: Sequence[PriceLike], lookback: int, strength: float) -> bool:
    """Return `True` if the tail of `points` shows a confirmed up-move.

    Parameters
    ----------
    points : sequence of PricePoint or float
        Ordered price history, oldest first.
    lookback : int
        Number of consecutive steps inspected.  ``lookback + 1`` points
        are required; shorter histories never signal.
    strength : float
        Fraction in (0, 1] of steps that must rise strictly.
    """
    return _has_trend(points, lookback, strength, rising=True)


def has_downtrend(points: Sequence[PriceLike], lookback: int, strength: float) -> bool:
    """Mirror of `has_uptrend` for strictly falling steps."""
    return _has_trend(points, lookback, strength, rising=False)
