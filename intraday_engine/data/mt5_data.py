"""
MetaTrader 5 data feed.

This module wraps the `MetaTrader5` Python package to fetch live
quotes, minute history and daily candles from a running terminal.
If the package is not installed or initialisation fails, the code
raises a clear exception.  Users can skip installing MetaTrader5 when
trading from the web source or running offline trials.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Sequence

import pandas as pd

from ..config.schema import MT5Config
from ..execution.models import PricePoint
from ..utils.timeutils import day_bounds
from .sources import DailyCandle, DataSourceError, Quote, frame_to_points, unique_symbols

# Attempt to import MetaTrader5.  If unavailable, mt5 will be None.
try:
    import MetaTrader5 as mt5  # type: ignore
except ImportError:
    mt5 = None  # Will be checked at runtime


logger = logging.getLogger(__name__)


class MT5DataFeed:
    """Handle connection to MetaTrader 5 and retrieval of quotes and rates."""

    name = "mt5"

    def __init__(self, config: MT5Config, timezone: str) -> None:
        self.config = config
        self.timezone = timezone
        self._connected = False

    def connect(self) -> None:
        """Initialise the MetaTrader 5 terminal.

        Raises
        ------
        RuntimeError
            If the MetaTrader5 package is not installed or initialisation fails.
        """
        if mt5 is None:
            raise RuntimeError(
                "MetaTrader5 package is not installed.  Install it with 'pip install MetaTrader5' to use the mt5 source."
            )
        if not mt5.initialize(path=self.config.path, login=self.config.login,
                              password=self.config.password, server=self.config.server):
            raise RuntimeError(f"MT5 initialisation failed: {mt5.last_error()}")
        self._connected = True

    def close(self) -> None:
        """Shutdown the MT5 connection if it was opened."""
        if mt5 and self._connected:
            mt5.shutdown()
            self._connected = False

    def _require_connection(self) -> None:
        if not self._connected:
            raise DataSourceError("MT5DataFeed is not connected.  Call connect() before requesting data.")

    def get_rates(self, symbol: str, timeframe: int, start: datetime, end: datetime) -> pd.DataFrame:
        """Retrieve rates between `start` and `end` as a tz-aware frame."""
        self._require_connection()
        rates = mt5.copy_rates_range(symbol, timeframe, start, end)
        if rates is None or len(rates) == 0:
            return pd.DataFrame()
        df = pd.DataFrame(rates)
        df['time'] = pd.to_datetime(df['time'], unit='s', utc=True)
        df = df.set_index('time').sort_index()
        df.index = df.index.tz_convert(self.timezone)
        return df

    def get_quotes(self, symbols: Sequence[str]) -> Dict[str, Quote]:
        self._require_connection()
        quotes: Dict[str, Quote] = {}
        for symbol in unique_symbols(symbols):
            tick = mt5.symbol_info_tick(symbol)
            daily = mt5.copy_rates_from_pos(symbol, mt5.TIMEFRAME_D1, 1, 1)
            price = float(getattr(tick, 'last', 0) or getattr(tick, 'bid', 0) or 0) if tick else 0.0
            if price <= 0:
                logger.warning("No MT5 tick for %s", symbol)
                continue
            prev_close = float(daily[0]['close']) if daily is not None and len(daily) else price
            quotes[symbol] = Quote(
                symbol=symbol,
                price=price,
                prev_close=prev_close,
                time=pd.Timestamp(tick.time, unit='s', tz='UTC'),
                volume=float(getattr(tick, 'volume', 0) or 0) or None,
            )
        return quotes

    def get_minute_history(self, symbol: str, date: str) -> List[PricePoint]:
        self._require_connection()
        start, end = day_bounds(date, self.timezone)
        df = self.get_rates(
            symbol,
            mt5.TIMEFRAME_M1,
            start.tz_convert('UTC').to_pydatetime(),
            end.tz_convert('UTC').to_pydatetime(),
        )
        return frame_to_points(df, 'close', 'tick_volume')

    def get_daily_history(self, symbol: str, date: str, lookback_days: int = 45) -> List[DailyCandle]:
        self._require_connection()
        start, end = day_bounds(date, self.timezone)
        df = self.get_rates(
            symbol,
            mt5.TIMEFRAME_D1,
            (start - pd.Timedelta(days=lookback_days)).tz_convert('UTC').to_pydatetime(),
            end.tz_convert('UTC').to_pydatetime(),
        )
        return [
            DailyCandle(
                date=ts.strftime("%Y-%m-%d"),
                open=float(row['open']),
                high=float(row['high']),
                low=float(row['low']),
                close=float(row['close']),
                volume=float(row.get('tick_volume', 0) or 0),
            )
            for ts, row in df.iterrows()
        ]

    def get_universe(self, count: int) -> List[str]:
        self._require_connection()
        infos = mt5.symbols_get() or ()
        return [info.name for info in infos if getattr(info, 'visible', True)][:count]
