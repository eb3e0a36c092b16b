"""
Price, position and trade models.

These dataclasses represent the objects passed between the strategy,
the position lifecycle and the engines.  `PricePoint`, `Position` and
`Trade` are frozen: lifecycle transitions return new instances rather
than mutating the ones they were given, which is what lets the live
loop and the historical simulator share a single evaluation function.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

import pandas as pd


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_action(self) -> "Action":
        return Action.BUY if self is Side.LONG else Action.SELL_SHORT

    @property
    def exit_action(self) -> "Action":
        return Action.SELL if self is Side.LONG else Action.COVER

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    SELL_SHORT = "SELL_SHORT"
    COVER = "COVER"

    @property
    def is_exit(self) -> bool:
        return self in (Action.SELL, Action.COVER)


class InstrumentType(str, Enum):
    SPOT = "SPOT"
    PUT_OPTION = "PUT_OPTION"


def _iso(ts: Optional[pd.Timestamp]) -> Optional[str]:
    return None if ts is None else pd.Timestamp(ts).isoformat()


def _parse_ts(value: Any) -> Optional[pd.Timestamp]:
    if value is None or value == "":
        return None
    ts = pd.Timestamp(value)
    return None if pd.isna(ts) else ts


@dataclass(frozen=True)
class PricePoint:
    """A single price observation."""
    time: pd.Timestamp
    price: float
    volume: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'time': _iso(self.time), 'price': self.price}
        if self.volume is not None:
            data['volume'] = self.volume
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["PricePoint"]:
        """Parse a serialised point; returns `None` for unusable entries."""
        try:
            time = _parse_ts(data.get('time'))
            price = float(data.get('price'))
        except (TypeError, ValueError):
            return None
        if time is None or not price > 0:
            return None
        volume = data.get('volume')
        return cls(time=time, price=price, volume=float(volume) if volume is not None else None)


@dataclass(frozen=True)
class Position:
    """An open simulated position on one symbol."""
    symbol: str
    side: Side
    entry_price: float
    units: int
    remaining_units: int
    entry_time: pd.Timestamp
    partial_booked: bool = False
    max_favorable_percent: float = 0.0
    instrument: InstrumentType = InstrumentType.SPOT
    option_entry_premium: Optional[float] = None
    premium_move_per_underlying_percent: float = 1.0
    preset_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'side': self.side.value,
            'entry_price': self.entry_price,
            'units': self.units,
            'remaining_units': self.remaining_units,
            'entry_time': _iso(self.entry_time),
            'partial_booked': self.partial_booked,
            'max_favorable_percent': self.max_favorable_percent,
            'instrument': self.instrument.value,
            'option_entry_premium': self.option_entry_premium,
            'premium_move_per_underlying_percent': self.premium_move_per_underlying_percent,
            'preset_id': self.preset_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        units = int(data['units']) if data.get('units') is not None else int(data['remaining_units'])
        premium = data.get('option_entry_premium')
        return cls(
            symbol=str(data['symbol']),
            side=Side(data['side']),
            entry_price=float(data['entry_price']),
            units=units,
            remaining_units=int(data['remaining_units']),
            entry_time=_parse_ts(data.get('entry_time')) or pd.Timestamp.now(tz="UTC"),
            partial_booked=bool(data.get('partial_booked', False)),
            max_favorable_percent=float(data.get('max_favorable_percent') or 0.0),
            instrument=InstrumentType(data.get('instrument') or InstrumentType.SPOT.value),
            option_entry_premium=float(premium) if premium is not None else None,
            premium_move_per_underlying_percent=float(data.get('premium_move_per_underlying_percent') or 1.0),
            preset_id=data.get('preset_id'),
        )


@dataclass(frozen=True)
class Trade:
    """An immutable ledger entry produced by a lifecycle transition."""
    action: Action
    symbol: str
    price: float
    units: int
    time: pd.Timestamp
    reason: str
    pnl: Optional[float] = None
    preset_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, str, str, int]:
        return (self.action.value, self.symbol, _iso(self.time) or "", f"{self.price:.4f}", int(self.units))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'symbol': self.symbol,
            'price': self.price,
            'units': self.units,
            'time': _iso(self.time),
            'reason': self.reason,
            'pnl': self.pnl,
            'preset_id': self.preset_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        pnl = data.get('pnl')
        return cls(
            action=Action(data['action']),
            symbol=str(data['symbol']),
            price=float(data['price']),
            units=int(data['units']),
            time=_parse_ts(data.get('time')) or pd.Timestamp.now(tz="UTC"),
            reason=str(data.get('reason') or ""),
            pnl=float(pnl) if pnl is not None else None,
            preset_id=data.get('preset_id'),
        )


class TradeLedger:
    """Append-only trade history with duplicate suppression.

    Two trades with the same action, symbol, time, price (to four
    decimals) and units are considered the same event; only the first
    is kept.
    """

    def __init__(self, trades: Optional[List[Trade]] = None) -> None:
        self._trades: List[Trade] = []
        self._keys: Set[Tuple[str, str, str, str, int]] = set()
        for trade in trades or []:
            self.append(trade)

    def append(self, trade: Trade) -> bool:
        """Record `trade`; returns False when it was already recorded."""
        key = trade.key
        if key in self._keys:
            return False
        self._keys.add(key)
        self._trades.append(trade)
        return True

    def extend(self, trades) -> int:
        return sum(1 for trade in trades if self.append(trade))

    def __iter__(self) -> Iterator[Trade]:
        return iter(self._trades)

    def __len__(self) -> int:
        return len(self._trades)

    def __getitem__(self, index):
        return self._trades[index]

    @property
    def trades(self) -> List[Trade]:
        return list(self._trades)

    def realized_pnl(self) -> float:
        return sum(t.pnl or 0.0 for t in self._trades if t.action.is_exit)


@dataclass
class DailyControl:
    """Day-scoped circuit breaker state."""
    date: Optional[str] = None
    cutoff_hit: bool = False

    def roll(self, day: str) -> bool:
        """Reset for `day` if it differs from the tracked date.

        Returns True when a rollover happened.
        """
        if self.date == day:
            return False
        self.date = day
        self.cutoff_hit = False
        return True


@dataclass
class TickResult:
    """Outcome of evaluating one price update for one symbol."""
    position: Optional[Position]
    trades: List[Trade] = field(default_factory=list)
