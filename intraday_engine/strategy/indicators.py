"""
Technical indicators over close-price series.

All functions accept any sequence of floats (or a `pandas.Series`) and
return a `pandas.Series` aligned with the input.  They are used by the
alternate entry rules; the primary trend rule needs none of them.
"""

from __future__ import annotations

from typing import Sequence, Union

import pandas as pd


SeriesLike = Union[pd.Series, Sequence[float]]


def _as_series(values: SeriesLike) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float).reset_index(drop=True)
    return pd.Series(list(values), dtype=float)


def ema(values: SeriesLike, period: int) -> pd.Series:
    """Exponential moving average seeded with the first value."""
    return _as_series(values).ewm(span=int(period), adjust=False).mean()


def rsi(values: SeriesLike, period: int = 14) -> pd.Series:
    """Wilder's relative strength index.

    The average gain and loss are seeded with the simple mean of the
    first `period` changes and smoothed with Wilder's recurrence
    afterwards.  Entries before index `period` are NaN; a window with
    no losses yields 100.
    """
    closes = _as_series(values)
    out = pd.Series(float('nan'), index=closes.index)
    if len(closes) <= period:
        return out

    changes = closes.diff()
    first = changes.iloc[1:period + 1]
    avg_gain = first.clip(lower=0.0).sum() / period
    avg_loss = (-first).clip(lower=0.0).sum() / period

    for i in range(period, len(closes)):
        if i > period:
            change = changes.iloc[i]
            avg_gain = (avg_gain * (period - 1) + max(change, 0.0)) / period
            avg_loss = (avg_loss * (period - 1) + max(-change, 0.0)) / period
        if avg_loss == 0:
            out.iloc[i] = 100.0
        else:
            out.iloc[i] = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    return out


def supertrend_direction(values: SeriesLike, period: int = 10, factor: float = 3.0) -> pd.Series:
    """Supertrend direction computed from closes only.

    Without high/low data the true range collapses to the absolute
    close-to-close change, smoothed Wilder-style into the ATR.  Returns
    a series of ``1`` (up) or ``-1`` (down).  Histories shorter than
    ``period + 2`` points are undetermined and come back as all zeros.
    """
    closes = _as_series(values)
    n = len(closes)
    direction = pd.Series(0, index=closes.index, dtype=int)
    if n < period + 2:
        return direction

    true_range = closes.diff().abs().fillna(0.0)
    atr = true_range.iloc[1:period + 1].mean()
    final_upper = closes.iloc[0] + factor * atr
    final_lower = closes.iloc[0] - factor * atr
    trend = 1
    direction.iloc[0] = trend

    for i in range(1, n):
        atr = (atr * (period - 1) + true_range.iloc[i]) / period
        close = closes.iloc[i]
        prev_close = closes.iloc[i - 1]
        basic_upper = close + factor * atr
        basic_lower = close - factor * atr
        if basic_upper < final_upper or prev_close > final_upper:
            final_upper = basic_upper
        if basic_lower > final_lower or prev_close < final_lower:
            final_lower = basic_lower
        if close > final_upper:
            trend = 1
        elif close < final_lower:
            trend = -1
        direction.iloc[i] = trend
    return direction
