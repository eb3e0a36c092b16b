import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from dataclasses import replace

import pandas as pd

from intraday_engine.config.schema import EntryRule, StrategyConfig
from intraday_engine.execution.lifecycle import evaluate_tick, unrealized_pnl, units_for
from intraday_engine.execution.models import Action, InstrumentType, Position, PricePoint, Side
from intraday_engine.strategy.signals import DOWNTREND_REASON, PUT_REASON, UPTREND_REASON

import unittest


T0 = pd.Timestamp("2024-01-15 10:00", tz="Asia/Kolkata")


def _points(prices, start=T0):
    return [PricePoint(start + pd.Timedelta(minutes=i), float(p)) for i, p in enumerate(prices)]


def _long(units=10, entry=100.0, **kwargs):
    return Position(
        symbol="TEST", side=Side.LONG, entry_price=entry, units=units,
        remaining_units=kwargs.pop('remaining_units', units), entry_time=T0, **kwargs,
    )


class TestSpotExits(unittest.TestCase):
    def setUp(self) -> None:
        self.config = StrategyConfig()
        self.now = T0 + pd.Timedelta(minutes=5)

    def test_first_target_books_partial(self) -> None:
        """A 0.7 % move on a 10-unit long books 6 units and keeps 4 open."""
        result = evaluate_tick("TEST", [], _long(), self.config, self.now, 100.7)
        self.assertEqual(len(result.trades), 1)
        trade = result.trades[0]
        self.assertEqual(trade.action, Action.SELL)
        self.assertEqual(trade.units, 6)
        self.assertIn("First target hit", trade.reason)
        self.assertAlmostEqual(trade.pnl, 4.2)
        self.assertIsNotNone(result.position)
        self.assertEqual(result.position.remaining_units, 4)
        self.assertTrue(result.position.partial_booked)

    def test_partial_units_conserved(self) -> None:
        position = _long(units=7)
        result = evaluate_tick("TEST", [], position, self.config, self.now, 100.7)
        booked = sum(t.units for t in result.trades)
        self.assertEqual(booked, 4)
        self.assertEqual(booked + result.position.remaining_units, position.units)

    def test_single_unit_partial_closes_everything(self) -> None:
        result = evaluate_tick("TEST", [], _long(units=1), self.config, self.now, 100.7)
        self.assertEqual(result.trades[0].units, 1)
        self.assertIsNone(result.position)

    def test_stop_loss_before_partial(self) -> None:
        result = evaluate_tick("TEST", [], _long(), self.config, self.now, 99.0)
        self.assertIsNone(result.position)
        self.assertEqual(result.trades[0].reason, "Per-stock stop loss hit (0.8%)")
        self.assertEqual(result.trades[0].units, 10)
        self.assertAlmostEqual(result.trades[0].pnl, -10.0)

    def test_stop_loss_wins_over_first_target(self) -> None:
        """When both rules match on one tick the stop closes everything."""
        config = replace(self.config, first_profit_target_percent=-1.0, stop_loss_percent=0.8)
        result = evaluate_tick("TEST", [], _long(), config, self.now, 99.0)
        self.assertEqual(len(result.trades), 1)
        self.assertEqual(result.trades[0].reason, "Per-stock stop loss hit (0.8%)")
        self.assertEqual(result.trades[0].units, 10)
        self.assertIsNone(result.position)

    def test_time_exit_runs_before_stop_loss(self) -> None:
        config = replace(self.config, time_exit_minutes=30)
        later = T0 + pd.Timedelta(minutes=30)
        result = evaluate_tick("TEST", [], _long(), config, later, 99.0)
        self.assertEqual(result.trades[0].reason, "Time exit (30 min) before target")
        self.assertIsNone(result.position)

    def test_time_exit_waits_for_deadline(self) -> None:
        config = replace(self.config, time_exit_minutes=30)
        result = evaluate_tick("TEST", [], _long(), config, self.now, 100.1)
        self.assertEqual(result.trades, [])
        self.assertEqual(result.position.remaining_units, 10)

    def test_trailing_stop_after_partial(self) -> None:
        """Best move 1.0 %, trail 0.5 %, price back to +0.4 % closes the rest."""
        position = _long(remaining_units=4, partial_booked=True, max_favorable_percent=1.0)
        result = evaluate_tick("TEST", [], position, self.config, self.now, 100.4)
        self.assertIsNone(result.position)
        self.assertEqual(result.trades[0].reason, "Trailing stop hit (0.5%)")
        self.assertEqual(result.trades[0].units, 4)

    def test_no_loss_stop_after_partial(self) -> None:
        position = _long(remaining_units=4, partial_booked=True, max_favorable_percent=0.7)
        result = evaluate_tick("TEST", [], position, self.config, self.now, 99.9)
        self.assertEqual(result.trades[0].reason, "No-loss mode stop at entry after first booking")
        self.assertIsNone(result.position)

    def test_final_target_after_partial(self) -> None:
        position = _long(remaining_units=4, partial_booked=True, max_favorable_percent=0.7)
        result = evaluate_tick("TEST", [], position, replace(self.config, allow_repeat_entry=False),
                               self.now, 101.5)
        self.assertEqual(result.trades[0].reason, "Final target hit (1.2%)")
        self.assertIsNone(result.position)

    def test_zero_trailing_and_target_disable_rules(self) -> None:
        config = replace(self.config, trailing_stop_percent=0, remainder_hard_target_percent=0)
        position = _long(remaining_units=4, partial_booked=True, max_favorable_percent=3.0)
        result = evaluate_tick("TEST", [], position, config, self.now, 102.0)
        self.assertEqual(result.trades, [])
        self.assertEqual(result.position.remaining_units, 4)

    def test_max_favorable_tracks_best_move(self) -> None:
        result = evaluate_tick("TEST", [], _long(), self.config, self.now, 100.3)
        self.assertAlmostEqual(result.position.max_favorable_percent, 0.3)
        result = evaluate_tick("TEST", [], result.position, self.config, self.now, 100.1)
        self.assertAlmostEqual(result.position.max_favorable_percent, 0.3)

    def test_short_stop_loss(self) -> None:
        position = replace(_long(), side=Side.SHORT)
        result = evaluate_tick("TEST", [], position, self.config, self.now, 101.0)
        self.assertEqual(result.trades[0].action, Action.COVER)
        self.assertAlmostEqual(result.trades[0].pnl, -10.0)

    def test_missing_price_is_noop(self) -> None:
        position = _long()
        for price in (None, 0, -5, float('nan')):
            result = evaluate_tick("TEST", [], position, self.config, self.now, price)
            self.assertIs(result.position, position)
            self.assertEqual(result.trades, [])

    def test_forced_exit_closes_in_full(self) -> None:
        position = _long(remaining_units=4, partial_booked=True)
        history = _points(range(100, 110))
        result = evaluate_tick("TEST", history, position, self.config, self.now, 100.2,
                               force_exit_reason="Auto square-off")
        self.assertIsNone(result.position)
        self.assertEqual(len(result.trades), 1)
        self.assertEqual(result.trades[0].units, 4)
        self.assertEqual(result.trades[0].reason, "Auto square-off")


class TestEntries(unittest.TestCase):
    def setUp(self) -> None:
        self.config = StrategyConfig()

    def test_uptrend_opens_long(self) -> None:
        history = _points(range(100, 109))
        result = evaluate_tick("TEST", history, None, self.config, history[-1].time, 108.0)
        self.assertEqual(len(result.trades), 1)
        trade = result.trades[0]
        self.assertEqual(trade.action, Action.BUY)
        self.assertEqual(trade.reason, UPTREND_REASON)
        # 10000 capital over 5 slots buys floor(2000 / 108) units
        self.assertEqual(trade.units, 18)
        self.assertEqual(result.position.side, Side.LONG)
        self.assertEqual(result.position.remaining_units, 18)

    def test_downtrend_opens_short_when_allowed(self) -> None:
        history = _points(range(108, 99, -1))
        result = evaluate_tick("TEST", history, None, self.config, history[-1].time, 100.0)
        self.assertEqual(result.trades[0].action, Action.SELL_SHORT)
        self.assertEqual(result.trades[0].reason, DOWNTREND_REASON)

        no_short = replace(self.config, allow_short=False)
        result = evaluate_tick("TEST", history, None, no_short, history[-1].time, 100.0)
        self.assertIsNone(result.position)
        self.assertEqual(result.trades, [])

    def test_entries_blocked(self) -> None:
        history = _points(range(100, 109))
        result = evaluate_tick("TEST", history, None, self.config, history[-1].time, 108.0,
                               entries_allowed=False)
        self.assertIsNone(result.position)
        self.assertEqual(result.trades, [])

    def test_unaffordable_price_skips_entry(self) -> None:
        history = _points(range(5000, 5009))
        self.assertEqual(units_for(self.config, 5008.0), 0)
        result = evaluate_tick("TEST", history, None, self.config, history[-1].time, 5008.0)
        self.assertIsNone(result.position)
        self.assertEqual(result.trades, [])

    def test_repeat_entry_on_same_tick(self) -> None:
        """A full exit followed by a fresh signal re-enters on the same tick."""
        history = _points([100.5 + 0.125 * i for i in range(9)])
        position = _long(remaining_units=4, partial_booked=True, max_favorable_percent=0.7)
        result = evaluate_tick("TEST", history, position, self.config, history[-1].time, 101.5)
        self.assertEqual([t.action for t in result.trades], [Action.SELL, Action.BUY])
        self.assertEqual(result.position.entry_price, 101.5)
        self.assertFalse(result.position.partial_booked)

        no_repeat = replace(self.config, allow_repeat_entry=False)
        result = evaluate_tick("TEST", history, position, no_repeat, history[-1].time, 101.5)
        self.assertEqual([t.action for t in result.trades], [Action.SELL])
        self.assertIsNone(result.position)


class TestPutPositions(unittest.TestCase):
    def setUp(self) -> None:
        self.config = replace(StrategyConfig(), entry_rule=EntryRule.BEARISH_PUT, allow_repeat_entry=False)

    def _put(self) -> Position:
        return Position(
            symbol="TEST", side=Side.LONG, entry_price=100.0, units=400, remaining_units=400,
            entry_time=T0, instrument=InstrumentType.PUT_OPTION, option_entry_premium=5.0,
        )

    def test_bearish_history_buys_put(self) -> None:
        history = _points([200 - 0.5 * i for i in range(60)])
        result = evaluate_tick("TEST", history, None, self.config, history[-1].time, history[-1].price)
        self.assertEqual(len(result.trades), 1)
        trade = result.trades[0]
        self.assertEqual(trade.action, Action.BUY)
        self.assertEqual(trade.reason, PUT_REASON)
        self.assertAlmostEqual(trade.price, 5.0)
        self.assertEqual(trade.units, 400)
        self.assertIs(result.position.instrument, InstrumentType.PUT_OPTION)

    def test_put_target_on_premium_points(self) -> None:
        result = evaluate_tick("TEST", [], self._put(), self.config, T0, 98.0)
        trade = result.trades[0]
        self.assertEqual(trade.reason, "PUT target hit (+2.00)")
        self.assertAlmostEqual(trade.price, 7.0)
        self.assertAlmostEqual(trade.pnl, 800.0)
        self.assertIsNone(result.position)

    def test_put_stop_on_premium_points(self) -> None:
        result = evaluate_tick("TEST", [], self._put(), self.config, T0, 101.0)
        self.assertEqual(result.trades[0].reason, "PUT stop loss hit (-1.00)")
        self.assertAlmostEqual(result.trades[0].pnl, -400.0)

    def test_put_marks_on_premium(self) -> None:
        self.assertAlmostEqual(unrealized_pnl(self._put(), 99.5), 200.0)


if __name__ == '__main__':
    unittest.main()
