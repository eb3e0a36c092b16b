import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import json
import tempfile

import pandas as pd

from intraday_engine.data.history import PriceHistoryStore
from intraday_engine.execution.models import PricePoint

import unittest


T0 = pd.Timestamp("2024-01-15 10:00", tz="Asia/Kolkata")


def _point(minute, price):
    return PricePoint(T0 + pd.Timedelta(minutes=minute), price)


class TestPriceHistoryStore(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = tmp.name

    def test_history_is_bounded(self) -> None:
        store = PriceHistoryStore(max_points=5)
        store.load_day("2024-01-15")
        for i in range(12):
            store.append("TEST", _point(i, 100 + i))
        history = store.get("TEST")
        self.assertEqual(len(history), 5)
        self.assertEqual([p.price for p in history], [107, 108, 109, 110, 111])
        self.assertEqual(store.latest("TEST").price, 111)
        self.assertEqual(store.get("OTHER"), [])

    def test_save_and_reload(self) -> None:
        store = PriceHistoryStore(max_points=10, directory=self.dir)
        store.load_day("2024-01-15")
        store.append("TEST", _point(0, 100.0))
        store.append("TEST", _point(1, 101.0))
        self.assertTrue(store.save(force=True))

        with open(os.path.join(self.dir, "2024-01-15.json"), encoding="utf-8") as fh:
            payload = json.load(fh)
        self.assertEqual(payload['date'], "2024-01-15")
        self.assertEqual(len(payload['history_by_symbol']['TEST']), 2)

        reloaded = PriceHistoryStore(max_points=10, directory=self.dir)
        self.assertTrue(reloaded.load_day("2024-01-15"))
        self.assertEqual([p.price for p in reloaded.get("TEST")], [100.0, 101.0])
        self.assertEqual(reloaded.get("TEST")[0].time, T0)

    def test_reload_drops_bad_points(self) -> None:
        path = os.path.join(self.dir, "2024-01-15.json")
        with open(path, "w", encoding="utf-8") as fh:
            json.dump({'history_by_symbol': {
                'TEST': [
                    {'time': (T0 + pd.Timedelta(minutes=1)).isoformat(), 'price': 101},
                    {'time': T0.isoformat(), 'price': 100},
                    {'time': T0.isoformat(), 'price': 99},
                    {'time': 'garbage', 'price': 5},
                    {'time': T0.isoformat(), 'price': -1},
                ],
                'EMPTY': 'not a list',
            }}, fh)
        store = PriceHistoryStore(directory=self.dir)
        store.load_day("2024-01-15")
        self.assertEqual([p.price for p in store.get("TEST")], [100.0, 101.0])
        self.assertNotIn("EMPTY", store)

    def test_same_day_load_is_noop(self) -> None:
        store = PriceHistoryStore()
        self.assertTrue(store.load_day("2024-01-15"))
        store.append("TEST", _point(0, 100.0))
        self.assertFalse(store.load_day("2024-01-15"))
        self.assertEqual(len(store.get("TEST")), 1)
        self.assertTrue(store.load_day("2024-01-16"))
        self.assertEqual(store.get("TEST"), [])

    def test_unforced_save_is_debounced(self) -> None:
        store = PriceHistoryStore(directory=self.dir, save_interval_seconds=3600)
        store.load_day("2024-01-15")
        store.append("TEST", _point(0, 100.0))
        self.assertTrue(store.save())
        store.append("TEST", _point(1, 101.0))
        self.assertFalse(store.save())
        self.assertTrue(store.save(force=True))

    def test_change_over_minutes(self) -> None:
        store = PriceHistoryStore()
        store.load_day("2024-01-15")
        for i, price in enumerate([100.0, 101.0, 102.0, 104.0]):
            store.append("TEST", _point(i, price))
        self.assertAlmostEqual(store.change_percent_over_minutes("TEST", 1), (104 - 102) / 102 * 100)
        self.assertAlmostEqual(store.change_percent_over_minutes("TEST", 3), 4.0)
        self.assertEqual(store.change_percent_over_minutes("TEST", 10), 0.0)


if __name__ == '__main__':
    unittest.main()
