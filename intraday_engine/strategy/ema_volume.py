"""
EMA crossover confirmed by rising volume.

A long signal fires on the bar where the fast EMA crosses above the
slow EMA, the price closes above both averages and the bar's volume is
higher than the previous bar's.  The short signal is the mirror image.
Histories without volume never signal.
"""

from __future__ import annotations

from typing import Optional, Sequence

from ..config.schema import StrategyConfig
from ..execution.models import PricePoint, Side
from .indicators import ema


def crossover_side(points: Sequence[PricePoint], config: StrategyConfig) -> Optional[Side]:
    """Return the side of a crossover on the latest point, if any."""
    fast_period = max(2, int(config.volume_ema_fast_period))
    slow_period = max(fast_period + 1, int(config.volume_ema_slow_period))
    if len(points) < slow_period + 2:
        return None

    last, prev = points[-1], points[-2]
    if last.volume is None or prev.volume is None:
        return None

    closes = [p.price for p in points]
    fast = ema(closes, fast_period)
    slow = ema(closes, slow_period)
    prev_fast, prev_slow = fast.iloc[-2], slow.iloc[-2]
    curr_fast, curr_slow = fast.iloc[-1], slow.iloc[-1]
    price = last.price

    if last.volume <= prev.volume:
        return None
    if prev_fast <= prev_slow and curr_fast > curr_slow and price > curr_fast and price > curr_slow:
        return Side.LONG
    if prev_fast >= prev_slow and curr_fast < curr_slow and price < curr_fast and price < curr_slow:
        return Side.SHORT
    return None
