"""
Pre-market shortlist.

Before the open, every candidate symbol is scored on the previous
session's daily candle.  The long score rewards a close near the high,
a positive day change, a wide range, a volume spike and a close above
the prior close; the short score mirrors it.  The best scorers each way
are worth watching once the market opens.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..data.sources import DailyCandle, DailyHistorySource, unique_symbols


logger = logging.getLogger(__name__)

SHORTLIST_SIZE = 10
VOLUME_LOOKBACK = 5
VOLUME_SPIKE_CAP = 3.0


def _percent_change(base: float, current: float) -> float:
    if not base or not current:
        return 0.0
    return (current - base) / base * 100.0


@dataclass(frozen=True)
class ShortlistCandidate:
    symbol: str
    close: float
    day_change_percent: float
    range_percent: float
    close_strength: float
    volume_spike: float
    long_score: float
    short_score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def score_candidate(symbol: str, candle: DailyCandle, previous: Sequence[DailyCandle]) -> ShortlistCandidate:
    """Score one daily candle against the candles before it.

    Parameters
    ----------
    symbol : str
        Symbol being scored.
    candle : DailyCandle
        The session to score.
    previous : sequence of DailyCandle
        Earlier sessions, oldest first.  The last one supplies the prior
        close; all of them supply the average volume.  May be empty.

    Returns
    -------
    ShortlistCandidate
        Rounded metrics with `close_strength` in percent of the range.
    """
    day_range = max(0.0001, candle.high - candle.low)
    close_strength = (candle.close - candle.low) / day_range
    day_change = _percent_change(candle.open, candle.close)
    range_percent = _percent_change(candle.close, candle.high) - _percent_change(candle.close, candle.low)
    prev_close = previous[-1].close if previous else candle.close
    trend_up = 1 if candle.close > prev_close else 0
    trend_down = 1 if candle.close < prev_close else 0
    volumes = [c.volume for c in previous if c.volume is not None]
    volume_avg = sum(volumes) / len(volumes) if volumes else 0.0
    volume_spike = candle.volume / volume_avg if volume_avg > 0 else 1.0

    shared = max(range_percent, 0.0) * 2 + min(volume_spike, VOLUME_SPIKE_CAP) * 10
    long_score = close_strength * 40 + max(day_change, 0.0) * 8 + shared + trend_up * 8
    short_score = (1 - close_strength) * 40 + max(-day_change, 0.0) * 8 + shared + trend_down * 8

    return ShortlistCandidate(
        symbol=symbol,
        close=round(candle.close, 2),
        day_change_percent=round(day_change, 2),
        range_percent=round(abs(range_percent), 2),
        close_strength=round(close_strength * 100, 2),
        volume_spike=round(volume_spike, 2),
        long_score=round(long_score, 2),
        short_score=round(short_score, 2),
    )


@dataclass
class PremarketShortlist:
    date: str
    universe_size: int
    long_candidates: List[ShortlistCandidate] = field(default_factory=list)
    short_candidates: List[ShortlistCandidate] = field(default_factory=list)
    evaluated: int = 0
    failed_symbols: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'universe_size': self.universe_size,
            'evaluated': self.evaluated,
            'long_candidates': [c.to_dict() for c in self.long_candidates],
            'short_candidates': [c.to_dict() for c in self.short_candidates],
            'failed_symbols': list(self.failed_symbols),
        }


def _score_symbol(source: DailyHistorySource, symbol: str, date: str) -> Optional[ShortlistCandidate]:
    candles = source.get_daily_history(symbol, date)
    for index, candle in enumerate(candles):
        if candle.date == date:
            previous = candles[max(0, index - VOLUME_LOOKBACK):index]
            return score_candidate(symbol, candle, previous)
    return None


def premarket_shortlist(
    source: DailyHistorySource,
    symbols: Sequence[str],
    date: str,
    limit: int = SHORTLIST_SIZE,
) -> PremarketShortlist:
    """Rank `symbols` on their `date` candle, best `limit` each way.

    Symbols whose fetch raises are listed in `failed_symbols`; symbols
    without a candle on `date` are skipped.  Neither stops the others
    from being scored.
    """
    symbols = unique_symbols(symbols)
    scored: List[ShortlistCandidate] = []
    failed: List[str] = []
    for symbol in symbols:
        try:
            candidate = _score_symbol(source, symbol, date)
        except Exception as exc:
            logger.warning("Shortlist skipped %s on %s: %s", symbol, date, exc)
            failed.append(symbol)
            continue
        if candidate is not None:
            scored.append(candidate)

    logger.info("Scored %d of %d symbols for the %s shortlist", len(scored), len(symbols), date)
    return PremarketShortlist(
        date=date,
        universe_size=len(symbols),
        long_candidates=sorted(scored, key=lambda c: c.long_score, reverse=True)[:limit],
        short_candidates=sorted(scored, key=lambda c: c.short_score, reverse=True)[:limit],
        evaluated=len(scored),
        failed_symbols=failed,
    )
