import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pandas as pd

from intraday_engine.data.sources import Quote
from intraday_engine.strategy.universe import SymbolUniverseSelector, rank_symbols
from intraday_engine.utils.timeutils import MarketPhase

import unittest


T0 = pd.Timestamp("2024-01-15 09:30", tz="Asia/Kolkata")


def _quote(symbol, price, prev_close):
    return Quote(symbol, price, prev_close, T0)


QUOTES = [
    _quote("FLAT", 100.0, 100.0),      # 0 %
    _quote("UP3", 103.0, 100.0),       # +3 %
    _quote("DOWN2", 98.0, 100.0),      # -2 %
    _quote("UP1", 101.0, 100.0),       # +1 %
    _quote("PRICEY", 5000.0, 4000.0),  # +25 % but unaffordable
]


class TestRankSymbols(unittest.TestCase):
    def test_ranks_by_change_and_filters_unaffordable(self) -> None:
        selected = rank_symbols(QUOTES, top_n=3, offset=0, capital_per_slot=2000.0)
        self.assertEqual([q.symbol for q in selected], ["UP3", "UP1", "FLAT"])

    def test_offset_wraps_around(self) -> None:
        selected = rank_symbols(QUOTES, top_n=3, offset=6, capital_per_slot=2000.0)
        # four affordable symbols, offset 6 -> start at rank 2
        self.assertEqual([q.symbol for q in selected], ["FLAT", "DOWN2", "UP3"])

    def test_top_n_larger_than_universe(self) -> None:
        selected = rank_symbols(QUOTES[:2], top_n=5, offset=0, capital_per_slot=2000.0)
        self.assertEqual([q.symbol for q in selected], ["UP3", "FLAT"])

    def test_selection_limit_overrides_basket(self) -> None:
        selected = rank_symbols(QUOTES, top_n=1, offset=3, capital_per_slot=2000.0, selection_limit=2)
        self.assertEqual([q.symbol for q in selected], ["UP3", "UP1"])

    def test_empty_universe(self) -> None:
        self.assertEqual(rank_symbols([], top_n=5, offset=0, capital_per_slot=2000.0), [])


class TestSymbolUniverseSelector(unittest.TestCase):
    def setUp(self) -> None:
        self.selector = SymbolUniverseSelector(top_n=2, rotation_window_minutes=60)
        self.today = "2024-01-15"

    def test_first_call_needs_selection(self) -> None:
        self.assertTrue(self.selector.needs_reselect(T0, self.today, MarketPhase.OPEN, 0))
        symbols = self.selector.select(QUOTES, self.today, T0, 0, 2000.0)
        self.assertEqual(symbols, ["UP3", "UP1"])
        self.assertFalse(self.selector.needs_reselect(T0, self.today, MarketPhase.OPEN, 0))

    def test_stagnant_window_rotates(self) -> None:
        """No trades for a full window moves the cursor on by top_n."""
        self.selector.select(QUOTES, self.today, T0, 0, 2000.0)
        later = T0 + pd.Timedelta(minutes=60)
        self.assertTrue(self.selector.needs_reselect(later, self.today, MarketPhase.OPEN, 0))
        self.assertEqual(self.selector.offset, 2)
        symbols = self.selector.select(QUOTES, self.today, later, 0, 2000.0)
        self.assertEqual(symbols, ["FLAT", "DOWN2"])

    def test_active_window_keeps_basket(self) -> None:
        self.selector.select(QUOTES, self.today, T0, 0, 2000.0)
        later = T0 + pd.Timedelta(minutes=60)
        self.assertFalse(self.selector.needs_reselect(later, self.today, MarketPhase.OPEN, 3))
        self.assertEqual(self.selector.offset, 0)
        # the window restarted with the new trade count
        self.assertEqual(self.selector.window_start, later)
        self.assertEqual(self.selector.window_trade_count, 3)

    def test_no_rotation_during_square_off(self) -> None:
        self.selector.select(QUOTES, self.today, T0, 0, 2000.0)
        later = T0 + pd.Timedelta(minutes=90)
        self.assertFalse(self.selector.needs_reselect(later, self.today, MarketPhase.SQUARE_OFF, 0))
        self.assertEqual(self.selector.offset, 0)

    def test_new_day_rewinds_cursor(self) -> None:
        self.selector.select(QUOTES, self.today, T0, 0, 2000.0)
        self.selector.needs_reselect(T0 + pd.Timedelta(minutes=60), self.today, MarketPhase.OPEN, 0)
        self.assertEqual(self.selector.offset, 2)
        next_day = T0 + pd.Timedelta(days=1)
        self.assertTrue(self.selector.needs_reselect(next_day, "2024-01-16", MarketPhase.WARMUP, 0))
        self.assertEqual(self.selector.offset, 0)


if __name__ == '__main__':
    unittest.main()
