"""
Yahoo Finance chart and screener adapter.

Quotes, minute history and daily candles come from the public v8 chart
endpoint; the candidate universe comes from the predefined screeners
(day gainers, day losers, most active), restricted to NSE/BSE listings.
Every HTTP call goes through one `requests.Session` with a fixed timeout.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import requests

from ..execution.models import PricePoint
from ..utils.timeutils import day_bounds, trading_date
from .sources import DailyCandle, DataSourceError, Quote, clean_points, unique_symbols


logger = logging.getLogger(__name__)

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
SCREENER_URL = "https://query1.finance.yahoo.com/v1/finance/screener/predefined/saved"
SCREENER_IDS = ("day_gainers", "day_losers", "most_actives")
DAILY_LOOKBACK_DAYS = 45
_INDIAN_SYMBOL = re.compile(r"\.(NS|BO)$")
# raised when a payload has the wrong shape
_MALFORMED = (AttributeError, IndexError, KeyError, TypeError)


class YahooChartSource:
    """Quote, history and universe source backed by Yahoo Finance.

    Parameters
    ----------
    timezone : str
        Exchange timezone used to compute day bounds.
    timeout : float
        Per-request timeout in seconds.
    session : requests.Session, optional
        Injected session (tests pass a stub).
    """

    name = "yahoo"

    def __init__(self, timezone: str = "Asia/Kolkata", timeout: float = 15.0,
                 session: Optional[requests.Session] = None) -> None:
        self.timezone = timezone
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", "Mozilla/5.0 (intraday-engine)")

    def close(self) -> None:
        self._session.close()

    def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise DataSourceError(f"Request to {url} failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise DataSourceError(f"Unexpected response from {url}: {type(payload).__name__}")
        return payload

    def _chart(self, symbol: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._get_json(f"{CHART_URL}/{symbol}", params)
        try:
            result = payload['chart']['result'][0]
        except _MALFORMED as exc:
            raise DataSourceError(f"No chart data for {symbol}") from exc
        if not isinstance(result, dict):
            raise DataSourceError(f"Malformed chart data for {symbol}")
        return result

    def get_quote(self, symbol: str) -> Quote:
        result = self._chart(symbol, {'range': '1d', 'interval': '1m'})
        try:
            return self._parse_quote(symbol, result)
        except _MALFORMED as exc:
            raise DataSourceError(f"Malformed quote for {symbol}: {exc}") from exc

    def _parse_quote(self, symbol: str, result: Dict[str, Any]) -> Quote:
        meta = result.get('meta') or {}
        price = meta.get('regularMarketPrice')
        prev_close = meta.get('previousClose') or meta.get('chartPreviousClose')
        if not isinstance(price, (int, float)) or price <= 0:
            raise DataSourceError(f"Invalid market price for {symbol}")
        if not isinstance(prev_close, (int, float)) or prev_close <= 0:
            prev_close = price

        volume = None
        volumes = (((result.get('indicators') or {}).get('quote') or [{}])[0]).get('volume') or []
        for value in reversed(volumes):
            if isinstance(value, (int, float)):
                volume = float(value)
                break

        market_time = meta.get('regularMarketTime')
        ts = pd.Timestamp(market_time, unit='s', tz='UTC') if isinstance(market_time, (int, float)) \
            else pd.Timestamp.now(tz='UTC')
        return Quote(symbol=symbol, price=float(price), prev_close=float(prev_close), time=ts, volume=volume)

    def get_quotes(self, symbols: Sequence[str]) -> Dict[str, Quote]:
        quotes: Dict[str, Quote] = {}
        for symbol in unique_symbols(symbols):
            try:
                quotes[symbol] = self.get_quote(symbol)
            except DataSourceError as exc:
                logger.warning("Quote unavailable for %s: %s", symbol, exc)
        return quotes

    def get_minute_history(self, symbol: str, date: str) -> List[PricePoint]:
        start, end = day_bounds(date, self.timezone)
        params = {
            'period1': int(start.timestamp()),
            'period2': int(end.timestamp()),
            'interval': '1m',
            'includePrePost': 'false',
            'events': 'history',
        }
        result = self._chart(symbol, params)
        try:
            points = self._parse_minutes(result)
        except _MALFORMED as exc:
            raise DataSourceError(f"Malformed minute history for {symbol}: {exc}") from exc
        return clean_points(points)

    def _parse_minutes(self, result: Dict[str, Any]) -> List[PricePoint]:
        timestamps = result.get('timestamp') or []
        quote = ((result.get('indicators') or {}).get('quote') or [{}])[0]
        closes = quote.get('close') or []
        volumes = quote.get('volume') or []

        points = []
        for i, stamp in enumerate(timestamps):
            close = closes[i] if i < len(closes) else None
            if not isinstance(close, (int, float)) or not isinstance(stamp, (int, float)):
                continue
            volume = volumes[i] if i < len(volumes) and isinstance(volumes[i], (int, float)) else None
            points.append(PricePoint(
                time=pd.Timestamp(stamp, unit='s', tz='UTC').tz_convert(self.timezone),
                price=float(close),
                volume=float(volume) if volume is not None else None,
            ))
        return points

    def get_daily_history(self, symbol: str, date: str) -> List[DailyCandle]:
        """Daily candles from `DAILY_LOOKBACK_DAYS` before `date` up to `date`."""
        start, end = day_bounds(date, self.timezone)
        params = {
            'period1': int((start - pd.Timedelta(days=DAILY_LOOKBACK_DAYS)).timestamp()),
            'period2': int(end.timestamp()),
            'interval': '1d',
            'includePrePost': 'false',
            'events': 'history',
        }
        result = self._chart(symbol, params)
        try:
            return self._parse_daily(result)
        except _MALFORMED as exc:
            raise DataSourceError(f"Malformed daily history for {symbol}: {exc}") from exc

    def _parse_daily(self, result: Dict[str, Any]) -> List[DailyCandle]:
        timestamps = result.get('timestamp') or []
        quote = ((result.get('indicators') or {}).get('quote') or [{}])[0]
        columns = {key: quote.get(key) or [] for key in ('open', 'high', 'low', 'close', 'volume')}

        candles = []
        for i, stamp in enumerate(timestamps):
            values = {key: col[i] if i < len(col) else None for key, col in columns.items()}
            ohlc = [values[key] for key in ('open', 'high', 'low', 'close')]
            if not isinstance(stamp, (int, float)) or not all(isinstance(v, (int, float)) for v in ohlc):
                continue
            volume = values['volume']
            candles.append(DailyCandle(
                date=trading_date(pd.Timestamp(stamp, unit='s', tz='UTC'), self.timezone),
                open=float(ohlc[0]),
                high=float(ohlc[1]),
                low=float(ohlc[2]),
                close=float(ohlc[3]),
                volume=float(volume) if isinstance(volume, (int, float)) else 0.0,
            ))
        return candles

    def _screener_symbols(self, screen_id: str, count: int) -> List[str]:
        payload = self._get_json(SCREENER_URL, {
            'formatted': 'true', 'scrIds': screen_id, 'count': count, 'start': 0,
        })
        try:
            quotes = ((payload.get('finance') or {}).get('result') or [{}])[0].get('quotes') or []
            return [
                q['symbol'] for q in quotes
                if isinstance(q, dict) and isinstance(q.get('symbol'), str) and _INDIAN_SYMBOL.search(q['symbol'])
            ]
        except _MALFORMED as exc:
            raise DataSourceError(f"Malformed screener payload for {screen_id}") from exc

    def get_universe(self, count: int) -> List[str]:
        """Merge the screener lists; a failing screener is skipped."""
        symbols: List[str] = []
        for screen_id in SCREENER_IDS:
            try:
                symbols.extend(self._screener_symbols(screen_id, count))
            except DataSourceError as exc:
                logger.warning("Screener %s failed: %s", screen_id, exc)
        return unique_symbols(symbols)
