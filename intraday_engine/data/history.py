"""
Per-symbol bounded price history.

The store keeps the most recent `max_points` observations of every
symbol for the current trading day and can persist itself to
``<state_dir>/price-history/<date>.json``.  Loading a date replaces the
in-memory map; loading the date that is already loaded is a no-op so
the live loop can call `load_day` on every cycle.
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

import pandas as pd

from ..execution.models import PricePoint
from ..utils.persistence import DebouncedJsonWriter, load_state
from .sources import clean_points


logger = logging.getLogger(__name__)


class PriceHistoryStore:
    """Bounded in-memory price series keyed by symbol.

    Parameters
    ----------
    max_points : int
        Points kept per symbol; older points are dropped first.
    directory : str, optional
        Folder holding one JSON file per date.  Without it the store is
        memory only.
    save_interval_seconds : float
        Debounce interval for unforced saves.
    """

    def __init__(self, max_points: int = 120, directory: Optional[str] = None,
                 save_interval_seconds: float = 15.0) -> None:
        self.max_points = max(2, int(max_points))
        self.directory = Path(directory) if directory else None
        self.save_interval_seconds = save_interval_seconds
        self.date: Optional[str] = None
        self._series: Dict[str, Deque[PricePoint]] = {}
        self._writer: Optional[DebouncedJsonWriter] = None

    def path_for(self, day: str) -> Optional[Path]:
        if self.directory is None:
            return None
        return self.directory / f"{day}.json"

    def load_day(self, day: str) -> bool:
        """Switch the store to `day`, restoring any saved history.

        Returns `True` when the active date changed.
        """
        if self.date == day:
            return False
        self.date = day
        self._series = {}
        path = self.path_for(day)
        self._writer = DebouncedJsonWriter(str(path), self.save_interval_seconds) if path else None
        if path is None:
            return True

        payload = load_state(str(path)) or {}
        by_symbol = payload.get('history_by_symbol') or {}
        for symbol, raw_points in by_symbol.items():
            if not isinstance(raw_points, list):
                continue
            points = clean_points(PricePoint.from_dict(p) for p in raw_points if isinstance(p, dict))
            if points:
                self._series[symbol] = deque(points[-self.max_points:], maxlen=self.max_points)
        logger.info("Loaded price history for %s (%d symbols)", day, len(self._series))
        return True

    def append(self, symbol: str, point: PricePoint) -> None:
        series = self._series.get(symbol)
        if series is None:
            series = self._series[symbol] = deque(maxlen=self.max_points)
        series.append(point)
        if self._writer is not None:
            self._writer.mark_dirty()

    def get(self, symbol: str) -> List[PricePoint]:
        return list(self._series.get(symbol, ()))

    def latest(self, symbol: str) -> Optional[PricePoint]:
        series = self._series.get(symbol)
        return series[-1] if series else None

    def symbols(self) -> List[str]:
        return list(self._series)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._series

    def change_percent_over_minutes(self, symbol: str, minutes: float) -> float:
        """Percent move from the last point at least `minutes` before the latest.

        Returns 0 when the history does not reach that far back.
        """
        series = self._series.get(symbol)
        if not series or len(series) < 2:
            return 0.0
        latest = series[-1]
        cutoff = latest.time - pd.Timedelta(minutes=minutes)
        for point in reversed(series):
            if point.time <= cutoff:
                return (latest.price - point.price) / point.price * 100.0
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'saved_at': pd.Timestamp.now(tz="UTC").isoformat(),
            'history_by_symbol': {
                symbol: [p.to_dict() for p in series] for symbol, series in self._series.items()
            },
        }

    def save(self, force: bool = False) -> bool:
        """Persist the current day; debounced unless `force` is set."""
        if self._writer is None or self.date is None:
            return False
        return self._writer.flush(self.to_dict, force=force)
