"""
Timezone, trading session and market phase utilities.

This module centralises all timezone handling and session calculations.
The live engine and the historical trial runner both use these helpers
to decide which trading day a timestamp belongs to and which phase of
the session (pre-open, warmup, open, square-off, closed) it falls in.
"""

from __future__ import annotations

import re
from datetime import date, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

import pandas as pd

if TYPE_CHECKING:
    from ..config.schema import SessionConfig


_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


class MarketPhase(str, Enum):
    PRE_OPEN = "pre-open"
    WARMUP = "warmup"
    OPEN = "open"
    SQUARE_OFF = "square-off"
    CLOSED = "closed"


def parse_time_str(ts: str) -> time:
    """Parse a `HH:MM` string into a `datetime.time` object.

    Parameters
    ----------
    ts : str
        A string in 24-hour format such as ``"09:15"``.

    Returns
    -------
    datetime.time
        The corresponding time.

    Raises
    ------
    ValueError
        If the string is not a valid `HH:MM` time.
    """
    match = re.match(r"^(\d{1,2}):(\d{2})$", ts or "")
    if not match:
        raise ValueError(f"Invalid time '{ts}'. Use HH:MM")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def parse_date_str(value: str) -> date:
    """Parse a `YYYY-MM-DD` string, raising `ValueError` on bad input."""
    match = _DATE_RE.match(value or "")
    if not match:
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise ValueError(f"Invalid date value '{value}'. Use a valid YYYY-MM-DD") from exc


def to_timezone(ts: Union[pd.Timestamp, str], tz_name: str) -> pd.Timestamp:
    """Convert a `pandas.Timestamp` to the specified timezone.

    If the timestamp is naive, it is assumed to be in UTC before
    conversion.  If it already has a timezone, it will be converted.
    """
    if not isinstance(ts, pd.Timestamp):
        ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert(tz_name)


def trading_date(ts: pd.Timestamp, tz_name: str) -> str:
    """Return the `YYYY-MM-DD` trading date of `ts` in the session timezone."""
    return to_timezone(ts, tz_name).strftime("%Y-%m-%d")


def minutes_between(start: Optional[pd.Timestamp], end: Optional[pd.Timestamp]) -> float:
    """Elapsed minutes from `start` to `end`; 0 when either is missing."""
    if start is None or end is None:
        return 0.0
    return (pd.Timestamp(end) - pd.Timestamp(start)).total_seconds() / 60.0


def _minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def market_phase(ts: pd.Timestamp, session: SessionConfig) -> MarketPhase:
    """Resolve the market phase of `ts` for the configured session.

    The checks run in a fixed order: weekends (when `weekdays_only`),
    pre-open, warmup, closed, square-off and finally open.  A session
    whose square-off time is at or after the close never reports
    `SQUARE_OFF`.
    """
    local_ts = to_timezone(ts, session.timezone)
    if session.weekdays_only and local_ts.weekday() >= 5:
        return MarketPhase.CLOSED

    now_minutes = local_ts.hour * 60 + local_ts.minute
    open_minutes = _minutes_of_day(parse_time_str(session.open))
    close_minutes = _minutes_of_day(parse_time_str(session.close))
    square_off_minutes = _minutes_of_day(parse_time_str(session.square_off))
    warmup_start = max(0, open_minutes - max(0, session.warmup_minutes))

    if now_minutes < warmup_start:
        return MarketPhase.PRE_OPEN
    if now_minutes < open_minutes:
        return MarketPhase.WARMUP
    if now_minutes >= close_minutes:
        return MarketPhase.CLOSED
    if now_minutes >= square_off_minutes:
        return MarketPhase.SQUARE_OFF
    return MarketPhase.OPEN


def is_post_close_window(ts: pd.Timestamp, session: SessionConfig, delay_minutes: int) -> bool:
    """True once `delay_minutes` have passed since the session close."""
    local_ts = to_timezone(ts, session.timezone)
    close_minutes = _minutes_of_day(parse_time_str(session.close))
    return local_ts.hour * 60 + local_ts.minute >= close_minutes + delay_minutes


def previous_market_date(day: Union[str, date]) -> str:
    """Return the weekday immediately before `day` as `YYYY-MM-DD`."""
    current = parse_date_str(day) if isinstance(day, str) else day
    current -= timedelta(days=1)
    while current.weekday() >= 5:
        current -= timedelta(days=1)
    return current.isoformat()


def day_bounds(day: str, tz_name: str) -> tuple:
    """Start and end (exclusive) of a trading date as tz-aware timestamps."""
    start = pd.Timestamp(parse_date_str(day)).tz_localize(tz_name)
    return start, start + pd.Timedelta(days=1)
