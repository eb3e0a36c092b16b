import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import math
from dataclasses import replace

import pandas as pd

from intraday_engine.config.schema import StrategyConfig
from intraday_engine.execution.models import PricePoint, Side
from intraday_engine.strategy.bearish_put import put_signal, put_units
from intraday_engine.strategy.ema_volume import crossover_side
from intraday_engine.strategy.indicators import ema, rsi, supertrend_direction

import unittest


FALLING = [200 - 0.5 * i for i in range(60)]
RISING = [100 + 0.5 * i for i in range(60)]


class TestIndicators(unittest.TestCase):
    def test_ema_of_constant_series(self) -> None:
        values = ema([5.0] * 10, 3)
        self.assertEqual(len(values), 10)
        self.assertTrue(all(abs(v - 5.0) < 1e-12 for v in values))

    def test_ema_seeded_with_first_value(self) -> None:
        values = ema([10.0, 20.0], 3)
        # alpha = 2 / (3 + 1)
        self.assertAlmostEqual(values.iloc[0], 10.0)
        self.assertAlmostEqual(values.iloc[1], 15.0)

    def test_rsi_bounds(self) -> None:
        up = rsi(RISING, 14)
        self.assertTrue(math.isnan(up.iloc[13]))
        self.assertEqual(up.iloc[14], 100.0)
        self.assertEqual(rsi(FALLING, 14).iloc[-1], 0.0)

    def test_rsi_short_series_is_undefined(self) -> None:
        self.assertTrue(rsi([1.0, 2.0, 3.0], 14).isna().all())

    def test_supertrend_direction(self) -> None:
        self.assertEqual(int(supertrend_direction(FALLING).iloc[-1]), -1)
        self.assertEqual(int(supertrend_direction(RISING).iloc[-1]), 1)
        short = supertrend_direction([1.0, 2.0, 3.0], period=10)
        self.assertEqual(list(short), [0, 0, 0])


class TestAlternateRules(unittest.TestCase):
    def setUp(self) -> None:
        self.config = StrategyConfig()

    def test_put_signal_on_bearish_confluence(self) -> None:
        signal = put_signal(FALLING, self.config)
        self.assertTrue(signal.is_bearish)
        self.assertEqual(signal.direction, -1)
        self.assertLess(signal.rsi, 50)
        self.assertLess(signal.ema_fast, signal.ema_slow)

    def test_put_signal_needs_history(self) -> None:
        self.assertFalse(put_signal(FALLING[:59], self.config).is_bearish)
        self.assertFalse(put_signal(RISING, self.config).is_bearish)

    def test_put_units_at_least_one(self) -> None:
        self.assertEqual(put_units(self.config), 400)
        self.assertEqual(put_units(replace(self.config, option_premium=50_000)), 1)

    def test_ema_volume_crossover(self) -> None:
        t0 = pd.Timestamp("2024-01-15 10:00", tz="Asia/Kolkata")
        prices = [100.0] * 25 + [101.0]
        volumes = [1000.0] * 25 + [1500.0]
        points = [PricePoint(t0 + pd.Timedelta(minutes=i), p, v) for i, (p, v) in enumerate(zip(prices, volumes))]
        self.assertIs(crossover_side(points, self.config), Side.LONG)

        falling = [PricePoint(p.time, 200.0 - p.price, p.volume) for p in points]
        self.assertIs(crossover_side(falling, self.config), Side.SHORT)

        quiet = points[:-1] + [PricePoint(points[-1].time, 101.0, 900.0)]
        self.assertIsNone(crossover_side(quiet, self.config))

        no_volume = [PricePoint(p.time, p.price) for p in points]
        self.assertIsNone(crossover_side(no_volume, self.config))


if __name__ == '__main__':
    unittest.main()
