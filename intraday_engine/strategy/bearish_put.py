"""
Option-style bearish PUT rule.

The rule buys a notional PUT on the underlying when the close series
is bearish on three indicators at once: Supertrend pointing down, RSI
below 50 and the close below a fast EMA that is itself below a slow
EMA.  No option chain is queried; the premium is modelled linearly
from the underlying's move since entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..config.schema import StrategyConfig
from ..execution.models import Position
from .indicators import ema, rsi, supertrend_direction


# Closes needed before the indicators are trusted.
MIN_CLOSES = 60
MIN_PREMIUM = 0.1


@dataclass(frozen=True)
class PutSignal:
    is_bearish: bool
    rsi: Optional[float] = None
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    direction: Optional[int] = None


def put_signal(closes: Sequence[float], config: StrategyConfig) -> PutSignal:
    """Evaluate the bearish confluence on the latest close."""
    if len(closes) < MIN_CLOSES:
        return PutSignal(is_bearish=False)

    rsi_period = max(2, int(config.rsi_period))
    fast_period = max(2, int(config.ema_fast_period))
    slow_period = max(3, int(config.ema_slow_period))
    factor = max(1.0, float(config.supertrend_factor))
    st_period = max(2, int(config.supertrend_period))

    last_rsi = float(rsi(closes, rsi_period).iloc[-1])
    fast = float(ema(closes, fast_period).iloc[-1])
    slow = float(ema(closes, slow_period).iloc[-1])
    direction = int(supertrend_direction(closes, st_period, factor).iloc[-1])
    close = float(closes[-1])

    bearish = direction == -1 and last_rsi < 50 and close < fast < slow
    return PutSignal(is_bearish=bearish, rsi=last_rsi, ema_fast=fast, ema_slow=slow, direction=direction)


def option_premium(config: StrategyConfig) -> float:
    return max(MIN_PREMIUM, float(config.option_premium))


def put_units(config: StrategyConfig) -> int:
    """PUT lots bought with one capital slot; always at least one."""
    return max(1, int(config.capital_per_slot // option_premium(config)))


def put_premium(position: Position, underlying_price: float) -> Optional[float]:
    """Model the current PUT premium for `position` at `underlying_price`.

    Every percent the underlying falls below the entry adds
    `premium_move_per_underlying_percent` to the entry premium; rises
    subtract from it.  The premium is floored at 0.1.
    """
    entry = position.entry_price
    base = position.option_entry_premium
    if not entry or entry <= 0 or base is None or base <= 0:
        return None
    move_pct = (entry - underlying_price) / entry * 100.0
    return max(MIN_PREMIUM, base + move_pct * (position.premium_move_per_underlying_percent or 1.0))
