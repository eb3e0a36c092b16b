"""
Symbol universe selection and rotation.

Each trading day the engine ranks a candidate universe by percent change
against the previous close and trades the top N.  When a full rotation
window passes without any trade, the selection cursor moves on by N so
the next band of ranked symbols replaces the stagnant basket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from ..data.sources import Quote
from ..utils.timeutils import MarketPhase, minutes_between


logger = logging.getLogger(__name__)


def rank_symbols(
    quotes: Iterable[Quote],
    top_n: int,
    offset: int,
    capital_per_slot: float,
    selection_limit: int = 0,
) -> List[Quote]:
    """Pick the symbols to trade from ranked quotes.

    Parameters
    ----------
    quotes : iterable of Quote
        Candidate quotes.
    top_n : int
        Basket size.
    offset : int
        Rotation cursor into the ranking; wraps around its length.
    capital_per_slot : float
        Symbols priced above this cannot be bought even once and are
        dropped before ranking.
    selection_limit : int
        When positive, return the first `selection_limit` ranked
        symbols and ignore `top_n` and `offset`.

    Returns
    -------
    list of Quote
        Selected quotes, ranked by descending percent change.
    """
    valid = [q for q in quotes if q.price > 0 and int(capital_per_slot // q.price) > 0]
    valid.sort(key=lambda q: q.change_percent, reverse=True)

    if selection_limit > 0:
        return valid[:selection_limit]
    if not valid:
        return []

    count = min(max(1, top_n), len(valid))
    start = offset % len(valid)
    return [valid[(start + i) % len(valid)] for i in range(count)]


@dataclass
class SymbolUniverseSelector:
    """Track the active basket and decide when it must be re-ranked."""

    top_n: int
    rotation_window_minutes: int = 60
    symbols: List[str] = field(default_factory=list)
    selection_date: Optional[str] = None
    offset: int = 0
    window_start: Optional[pd.Timestamp] = None
    window_trade_count: int = 0

    def needs_reselect(self, now: pd.Timestamp, today: str, phase: MarketPhase, trade_count: int) -> bool:
        """Return `True` when the basket must be rebuilt.

        A new day (which also rewinds the rotation cursor) or an empty
        basket always triggers a rebuild.  During warmup and open, a
        rotation window with no new trades moves the cursor on by
        `top_n` and triggers one too; every elapsed window restarts the
        count.
        """
        if self.selection_date != today:
            self.offset = 0
            return True
        if not self.symbols:
            return True
        if phase not in (MarketPhase.OPEN, MarketPhase.WARMUP) or self.window_start is None:
            return False
        if minutes_between(self.window_start, now) < self.rotation_window_minutes:
            return False

        stale = trade_count - self.window_trade_count <= 0
        if stale:
            self.offset += self.top_n
            logger.info("No trades in the last %d minutes; rotating basket (offset=%d)",
                        self.rotation_window_minutes, self.offset)
        self.window_start = now
        self.window_trade_count = trade_count
        return stale

    def select(self, quotes: Iterable[Quote], today: str, now: pd.Timestamp, trade_count: int,
               capital_per_slot: float, selection_limit: int = 0) -> List[str]:
        selected = rank_symbols(quotes, self.top_n, self.offset, capital_per_slot, selection_limit)
        self.symbols = [q.symbol for q in selected]
        self.selection_date = today
        self.window_start = now
        self.window_trade_count = trade_count
        logger.info("Selected %d symbols for %s: %s", len(self.symbols), today, ", ".join(self.symbols))
        return self.symbols

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbols': list(self.symbols),
            'selection_date': self.selection_date,
            'offset': self.offset,
            'window_start': self.window_start.isoformat() if self.window_start is not None else None,
            'window_trade_count': self.window_trade_count,
        }
