"""
Market data source interfaces.

The engine depends only on the protocols defined here.  Concrete
adapters live in `yahoo_data.py` (web chart API), `mt5_data.py`
(MetaTrader 5 terminal) and `csv_data.py` (offline minute files).
Daily candles feed the pre-market shortlist only.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import pandas as pd

from ..execution.models import PricePoint


class DataSourceError(RuntimeError):
    """Raised when a data source cannot deliver what was requested."""


@dataclass(frozen=True)
class Quote:
    """Latest price of one symbol with its previous close."""
    symbol: str
    price: float
    prev_close: float
    time: pd.Timestamp
    volume: Optional[float] = None

    @property
    def change_percent(self) -> float:
        if not self.prev_close:
            return 0.0
        return (self.price - self.prev_close) / self.prev_close * 100.0


@runtime_checkable
class QuoteSource(Protocol):
    def get_quotes(self, symbols: Sequence[str]) -> Dict[str, Quote]:
        """Return quotes for the symbols that could be priced.

        Symbols that fail are simply absent from the result.
        """
        ...


@runtime_checkable
class HistoricalSource(Protocol):
    def get_minute_history(self, symbol: str, date: str) -> List[PricePoint]:
        """Return the ordered minute closes of `symbol` on `date`."""
        ...


@dataclass(frozen=True)
class DailyCandle:
    """One daily OHLCV bar; `date` is the exchange-local `YYYY-MM-DD`."""
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@runtime_checkable
class DailyHistorySource(Protocol):
    def get_daily_history(self, symbol: str, date: str) -> List[DailyCandle]:
        """Return daily candles of `symbol` ending on `date`, oldest first."""
        ...


@runtime_checkable
class UniverseSource(Protocol):
    def get_universe(self, count: int) -> List[str]:
        """Return candidate symbols to rank, most relevant first."""
        ...


def unique_symbols(symbols: Iterable[str]) -> List[str]:
    """Drop empties and duplicates, keeping first-seen order."""
    seen = set()
    out: List[str] = []
    for symbol in symbols:
        if symbol and symbol not in seen:
            seen.add(symbol)
            out.append(symbol)
    return out


def clean_points(points: Iterable[PricePoint]) -> List[PricePoint]:
    """Sort points by time, drop invalid prices and collapse duplicate timestamps.

    When several points share a timestamp the first one is kept.
    """
    valid = [
        p for p in points
        if p is not None and p.time is not None and p.price is not None
        and math.isfinite(p.price) and p.price > 0
    ]
    valid.sort(key=lambda p: p.time)
    out: List[PricePoint] = []
    for point in valid:
        if out and out[-1].time == point.time:
            continue
        out.append(point)
    return out


def frame_to_points(df: pd.DataFrame, price_col: str = 'close', volume_col: Optional[str] = None) -> List[PricePoint]:
    """Convert a time-indexed OHLC frame to cleaned price points."""
    if df is None or df.empty:
        return []
    points = []
    for ts, row in df.iterrows():
        price = row.get(price_col)
        if price is None or pd.isna(price):
            continue
        volume = None
        if volume_col and volume_col in row and not pd.isna(row[volume_col]):
            volume = float(row[volume_col])
        points.append(PricePoint(time=pd.Timestamp(ts), price=float(price), volume=volume))
    return clean_points(points)
