"""
Entry signal dispatch.

`entry_signal` is the single entry point the position lifecycle uses to
ask "should this symbol be opened now?".  It routes to the rule named
by `StrategyConfig.entry_rule` and returns `None` when nothing fires.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..config.schema import EntryRule, StrategyConfig
from ..execution.models import InstrumentType, PricePoint, Side
from .bearish_put import put_signal
from .ema_volume import crossover_side
from .trend import has_downtrend, has_uptrend


UPTREND_REASON = "Continuous uptrend for 10+ minutes"
DOWNTREND_REASON = "Continuous downtrend for 10+ minutes"
PUT_REASON = "PUT entry: Supertrend bearish + RSI<50 + EMA fast below slow"


@dataclass(frozen=True)
class EntrySignal:
    side: Side
    reason: str
    instrument: InstrumentType = InstrumentType.SPOT


def _trend_signal(history: Sequence[PricePoint], config: StrategyConfig) -> Optional[EntrySignal]:
    if has_uptrend(history, config.buy_rise_minutes, config.trend_strength_threshold):
        return EntrySignal(Side.LONG, UPTREND_REASON)
    if config.allow_short and has_downtrend(history, config.short_fall_minutes, config.trend_strength_threshold):
        return EntrySignal(Side.SHORT, DOWNTREND_REASON)
    return None


def _put_signal(history: Sequence[PricePoint], config: StrategyConfig) -> Optional[EntrySignal]:
    closes = [p.price for p in history]
    if put_signal(closes, config).is_bearish:
        # Buying a PUT is a long premium position.
        return EntrySignal(Side.LONG, PUT_REASON, InstrumentType.PUT_OPTION)
    return None


def _ema_volume_signal(history: Sequence[PricePoint], config: StrategyConfig) -> Optional[EntrySignal]:
    side = crossover_side(history, config)
    if side is Side.LONG:
        return EntrySignal(Side.LONG, "EMA crossover up with rising volume")
    if side is Side.SHORT and config.allow_short:
        return EntrySignal(Side.SHORT, "EMA crossover down with rising volume")
    return None


_RULES = {
    EntryRule.TREND: _trend_signal,
    EntryRule.BEARISH_PUT: _put_signal,
    EntryRule.EMA_VOLUME: _ema_volume_signal,
}


def entry_signal(history: Sequence[PricePoint], config: StrategyConfig) -> Optional[EntrySignal]:
    """Evaluate the configured entry rule on `history` (oldest first)."""
    return _RULES[EntryRule(config.entry_rule)](history, config)
