"""
Position lifecycle.

`evaluate_tick` is the one function that decides entries and exits.
Both the live engine and the historical simulator call it with the
same arguments for every price update, so a replay of the prices seen
live reproduces the live trade sequence exactly.

A spot position moves through three states:

``NONE -> OPEN (no partial) -> OPEN (partial booked) -> closed``

Before partial booking the exit checks run in the order time exit,
stop loss, first target.  After it they run in the order no-loss stop,
trailing stop, final target.  At most one exit fires per tick.  A
forced exit (daily loss cutoff, square-off) overrides all of them.
PUT-style positions exit on premium points instead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import List, Optional, Sequence

import pandas as pd

from ..config.schema import SessionConfig, StrategyConfig
from ..strategy.bearish_put import option_premium, put_premium, put_units
from ..strategy.signals import entry_signal
from ..utils.timeutils import minutes_between
from .models import InstrumentType, Position, PricePoint, TickResult, Trade


logger = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    return f"{float(value):g}"


def cutoff_reason(config: StrategyConfig) -> str:
    return f"Max daily loss cutoff hit ({_fmt(config.max_daily_loss_percent)}%), forced square-off"


def square_off_reason(session: SessionConfig) -> str:
    return f"Auto square-off before market close ({session.square_off} {session.timezone})"


def is_valid_price(price) -> bool:
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


def percent_change(base: float, value: float) -> float:
    if not base:
        return 0.0
    return (value - base) / base * 100.0


def favorable_percent(position: Position, price: float) -> float:
    """Move since entry in percent, positive when it favours the position."""
    return position.side.sign * percent_change(position.entry_price, price)


def units_for(config: StrategyConfig, price: float) -> int:
    """Whole units one capital slot buys at `price`."""
    if not is_valid_price(price):
        return 0
    return int(math.floor(config.capital_per_slot / price))


def mark_price(position: Position, price: float) -> float:
    """Price at which `position` would be exited at underlying `price`."""
    if position.instrument is InstrumentType.PUT_OPTION:
        premium = put_premium(position, price)
        if premium is not None:
            return premium
    return price


def _entry_reference(position: Position) -> float:
    if position.instrument is InstrumentType.PUT_OPTION and position.option_entry_premium is not None:
        return position.option_entry_premium
    return position.entry_price


def unrealized_pnl(position: Position, price: float) -> float:
    """Mark-to-market P&L of the remaining units."""
    exit_price = mark_price(position, price)
    return position.side.sign * (exit_price - _entry_reference(position)) * position.remaining_units


def exit_position(
    position: Position,
    price: float,
    time: pd.Timestamp,
    reason: str,
    units: Optional[int] = None,
) -> tuple:
    """Exit `units` (all remaining by default) of `position`.

    Returns
    -------
    position : Position or None
        The reduced position, or `None` once nothing remains.
    trade : Trade or None
        The exit trade; `None` when there was nothing to exit.
    """
    if units is None or units <= 0:
        qty = position.remaining_units
    else:
        qty = min(int(units), position.remaining_units)
    if qty <= 0:
        return position, None

    exit_price = mark_price(position, price)
    pnl = position.side.sign * (exit_price - _entry_reference(position)) * qty
    trade = Trade(
        action=position.side.exit_action,
        symbol=position.symbol,
        price=round(exit_price, 2),
        units=qty,
        time=time,
        reason=reason,
        pnl=round(pnl, 2),
        preset_id=position.preset_id,
    )
    remaining = position.remaining_units - qty
    logger.info("%s %s x%d @ %.2f (%s) pnl=%.2f", trade.action.value, position.symbol, qty, trade.price, reason, trade.pnl)
    if remaining <= 0:
        return None, trade
    return replace(position, remaining_units=remaining), trade


def _put_exit(position: Position, price: float, config: StrategyConfig) -> Optional[str]:
    target = max(0.1, float(config.target_points))
    stop = max(0.1, float(config.stop_loss_points))
    premium = put_premium(position, price)
    if premium is None or position.option_entry_premium is None:
        return None
    premium_pnl = premium - position.option_entry_premium
    if premium_pnl >= target:
        return f"PUT target hit (+{target:.2f})"
    if premium_pnl <= -stop:
        return f"PUT stop loss hit (-{stop:.2f})"
    return None


def _spot_exit(position: Position, price: float, now: pd.Timestamp, config: StrategyConfig) -> tuple:
    """Pick the exit that fires on this tick as ``(reason, units)``.

    ``units`` is `None` for a full exit.  Returns ``(None, None)`` when
    the position stays open untouched.
    """
    favorable = favorable_percent(position, price)

    if not position.partial_booked:
        elapsed = minutes_between(position.entry_time, now)
        if (config.time_exit_minutes > 0 and elapsed >= config.time_exit_minutes
                and favorable < config.first_profit_target_percent):
            return f"Time exit ({_fmt(config.time_exit_minutes)} min) before target", None
        if favorable <= -config.stop_loss_percent:
            return f"Per-stock stop loss hit ({_fmt(config.stop_loss_percent)}%)", None
        if favorable >= config.first_profit_target_percent:
            units = max(1, int(math.floor(position.units * config.first_profit_exit_percent / 100.0)))
            reason = (f"First target hit ({_fmt(config.first_profit_target_percent)}%), "
                      f"booked {_fmt(config.first_profit_exit_percent)}%")
            return reason, units
        return None, None

    if config.move_stop_to_entry_after_first_exit and favorable <= 0:
        return "No-loss mode stop at entry after first booking", None
    best = position.max_favorable_percent
    if config.trailing_stop_percent > 0 and best > 0 and favorable <= best - config.trailing_stop_percent:
        return f"Trailing stop hit ({_fmt(config.trailing_stop_percent)}%)", None
    if config.remainder_hard_target_percent > 0 and favorable >= config.remainder_hard_target_percent:
        return f"Final target hit ({_fmt(config.remainder_hard_target_percent)}%)", None
    return None, None


def _try_entry(
    symbol: str,
    history: Sequence[PricePoint],
    config: StrategyConfig,
    now: pd.Timestamp,
    price: float,
    preset_id: Optional[str],
) -> tuple:
    signal = entry_signal(history, config)
    if signal is None:
        return None, None

    if signal.instrument is InstrumentType.PUT_OPTION:
        premium = option_premium(config)
        units = put_units(config)
        trade_price = premium
    else:
        premium = None
        units = units_for(config, price)
        trade_price = price
    if units <= 0:
        logger.debug("Skipping %s entry at %.2f: capital per slot too small", symbol, price)
        return None, None

    position = Position(
        symbol=symbol,
        side=signal.side,
        entry_price=float(price),
        units=units,
        remaining_units=units,
        entry_time=now,
        instrument=signal.instrument,
        option_entry_premium=premium,
        premium_move_per_underlying_percent=float(config.premium_move_per_underlying_percent or 1.0),
        preset_id=preset_id,
    )
    trade = Trade(
        action=signal.side.entry_action,
        symbol=symbol,
        price=round(trade_price, 2),
        units=units,
        time=now,
        reason=signal.reason,
        preset_id=preset_id,
    )
    logger.info("%s %s x%d @ %.2f (%s)", trade.action.value, symbol, units, trade.price, signal.reason)
    return position, trade


def evaluate_tick(
    symbol: str,
    history: Sequence[PricePoint],
    position: Optional[Position],
    config: StrategyConfig,
    now: pd.Timestamp,
    price: Optional[float],
    *,
    entries_allowed: bool = True,
    force_exit_reason: Optional[str] = None,
    preset_id: Optional[str] = None,
) -> TickResult:
    """Advance one symbol by one price update.

    Parameters
    ----------
    symbol : str
        Instrument being evaluated.
    history : sequence of PricePoint
        Price history up to and including the current observation.
    position : Position or None
        The open position on `symbol`, if any.
    config : StrategyConfig
        Parameters to trade with.
    now : pandas.Timestamp
        Time of the current observation.
    price : float or None
        Current price.  A missing or non-positive price leaves
        everything unchanged.
    entries_allowed : bool
        Whether a new position may be opened on this tick.
    force_exit_reason : str, optional
        When set, the open position is closed in full with this reason
        and no entry is attempted.
    preset_id : str, optional
        Preset tag copied onto new positions and trades.

    Returns
    -------
    TickResult
        The position after the tick (or `None`) and the trades emitted,
        in order.
    """
    if not is_valid_price(price):
        return TickResult(position, [])
    price = float(price)
    trades: List[Trade] = []

    if position is None:
        if entries_allowed and force_exit_reason is None:
            position, trade = _try_entry(symbol, history, config, now, price, preset_id)
            if trade is not None:
                trades.append(trade)
        return TickResult(position, trades)

    best = max(position.max_favorable_percent, favorable_percent(position, price))
    position = replace(position, max_favorable_percent=best)

    if force_exit_reason is not None:
        position, trade = exit_position(position, price, now, force_exit_reason)
        if trade is not None:
            trades.append(trade)
        return TickResult(position, trades)

    if position.instrument is InstrumentType.PUT_OPTION:
        reason, units = _put_exit(position, price, config), None
    else:
        reason, units = _spot_exit(position, price, now, config)

    if reason is not None:
        booking_first_target = units is not None
        position, trade = exit_position(position, price, now, reason, units)
        if trade is not None:
            trades.append(trade)
        if position is not None and booking_first_target:
            position = replace(position, partial_booked=True)

    if position is None and entries_allowed and config.allow_repeat_entry:
        position, trade = _try_entry(symbol, history, config, now, price, preset_id)
        if trade is not None:
            trades.append(trade)

    return TickResult(position, trades)
