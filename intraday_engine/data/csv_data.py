"""
CSV data loader.

Offline trials read one-minute bars from CSV files laid out as
``{csv_dir}/{YYYY-MM-DD}/{SYMBOL}.csv``.  Each file must have a `time`
column and either a `close` or a `price` column; a `volume` column is
used when present.  Timestamps without a timezone are taken to be in
the exchange timezone.

The loader can also answer quote requests from the same files, which
lets the live engine be exercised against a recorded day.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ..execution.models import PricePoint
from .sources import DailyCandle, DataSourceError, Quote, frame_to_points, unique_symbols


logger = logging.getLogger(__name__)


class CSVDataLoader:
    """Load minute data from per-date CSV files.

    Parameters
    ----------
    csv_dir : str
        Root directory with one sub-directory per date.
    timezone : str
        IANA timezone name used to localise naive timestamps.
    """

    name = "csv"

    def __init__(self, csv_dir: str, timezone: str) -> None:
        self.csv_dir = Path(csv_dir)
        self.timezone = timezone

    def path_for(self, symbol: str, date: str) -> Path:
        return self.csv_dir / date / f"{symbol}.csv"

    def load(self, symbol: str, date: str) -> pd.DataFrame:
        """Return the bars of `symbol` on `date` indexed by tz-aware time."""
        file_path = self.path_for(symbol, date)
        if not file_path.exists():
            raise DataSourceError(f"CSV file not found for symbol {symbol}: {file_path}")

        df = pd.read_csv(file_path)
        df.columns = [str(c).strip().lower() for c in df.columns]
        if 'time' not in df.columns:
            raise DataSourceError(f"CSV for {symbol} has no 'time' column: {list(df.columns)}")
        if 'close' not in df.columns:
            if 'price' not in df.columns:
                raise DataSourceError(f"CSV for {symbol} needs a 'close' or 'price' column")
            df = df.rename(columns={'price': 'close'})

        df['time'] = pd.to_datetime(df['time'], errors='coerce')
        df = df.dropna(subset=['time']).set_index('time').sort_index()
        if df.index.tz is None:
            df.index = df.index.tz_localize(self.timezone)
        else:
            df.index = df.index.tz_convert(self.timezone)
        return df

    def get_minute_history(self, symbol: str, date: str) -> List[PricePoint]:
        df = self.load(symbol, date)
        return frame_to_points(df, 'close', 'volume' if 'volume' in df.columns else None)

    def get_daily_history(self, symbol: str, date: str) -> List[DailyCandle]:
        """Aggregate every recorded day up to `date` into one candle."""
        candles: List[DailyCandle] = []
        for day in self.recorded_dates():
            if day > date or not self.path_for(symbol, day).exists():
                continue
            df = self.load(symbol, day).dropna(subset=['close'])
            if df.empty:
                continue
            close = df['close']
            candles.append(DailyCandle(
                date=day,
                open=float(df['open'].iloc[0]) if 'open' in df.columns else float(close.iloc[0]),
                high=float(df['high'].max()) if 'high' in df.columns else float(close.max()),
                low=float(df['low'].min()) if 'low' in df.columns else float(close.min()),
                close=float(close.iloc[-1]),
                volume=float(df['volume'].fillna(0).sum()) if 'volume' in df.columns else 0.0,
            ))
        return candles

    def available_symbols(self, date: str) -> List[str]:
        folder = self.csv_dir / date
        if not folder.is_dir():
            return []
        return sorted(p.stem for p in folder.glob("*.csv"))

    def recorded_dates(self) -> List[str]:
        return sorted(p.name for p in self.csv_dir.glob("????-??-??") if p.is_dir())

    def latest_date(self) -> Optional[str]:
        dates = self.recorded_dates()
        return dates[-1] if dates else None

    def get_universe(self, count: int) -> List[str]:
        day = self.latest_date()
        return self.available_symbols(day)[:count] if day else []

    def get_quotes(self, symbols: Sequence[str]) -> Dict[str, Quote]:
        """Quote each symbol at the last bar of the most recent recorded date."""
        day = self.latest_date()
        quotes: Dict[str, Quote] = {}
        if day is None:
            return quotes
        for symbol in unique_symbols(symbols):
            try:
                points = self.get_minute_history(symbol, day)
            except DataSourceError as exc:
                logger.warning("Quote unavailable for %s: %s", symbol, exc)
                continue
            if not points:
                continue
            quotes[symbol] = Quote(
                symbol=symbol,
                price=points[-1].price,
                prev_close=points[0].price,
                time=points[-1].time,
                volume=points[-1].volume,
            )
        return quotes
