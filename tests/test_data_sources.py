import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import tempfile

import pandas as pd
import requests

from intraday_engine.data.csv_data import CSVDataLoader
from intraday_engine.data.sources import DailyHistorySource, DataSourceError, HistoricalSource, QuoteSource
from intraday_engine.data.yahoo_data import SCREENER_URL, YahooChartSource

import unittest


class StubResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class StubSession:
    """Answers chart and screener requests from canned payloads."""

    def __init__(self, charts=None, screeners=None, raw=None):
        self.headers = {}
        self.raw = raw or {}
        self.charts = charts or {}
        self.screeners = screeners or {}
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, dict(params or {}), timeout))
        key = (params or {}).get('scrIds') if url == SCREENER_URL else url.rsplit('/', 1)[-1]
        if key in self.raw:
            return StubResponse(self.raw[key])
        if url == SCREENER_URL:
            screen = params['scrIds']
            if screen not in self.screeners:
                return StubResponse({}, status=500)
            quotes = [{'symbol': s} for s in self.screeners[screen]]
            return StubResponse({'finance': {'result': [{'quotes': quotes}]}})
        symbol = url.rsplit('/', 1)[-1]
        if symbol not in self.charts:
            return StubResponse({'chart': {'result': None}}, status=404)
        return StubResponse({'chart': {'result': [self.charts[symbol]]}})

    def close(self):
        pass


T0 = 1705291200  # 2024-01-15 04:00 UTC, 09:30 in Kolkata

CHART = {
    'meta': {'regularMarketPrice': 102.5, 'previousClose': 100.0, 'regularMarketTime': T0 + 120},
    'timestamp': [T0 + 60, T0, T0 + 120, T0 + 180],
    'indicators': {'quote': [{'close': [101.0, 100.0, 102.5, None], 'volume': [10, 12, None, 5]}]},
}


class TestYahooChartSource(unittest.TestCase):
    def setUp(self) -> None:
        self.session = StubSession(
            charts={'AAA.NS': CHART},
            screeners={'day_gainers': ['AAA.NS', 'AAPL', 'BBB.BO'], 'most_actives': ['BBB.BO', 'CCC.NS']},
        )
        self.source = YahooChartSource("Asia/Kolkata", timeout=3.0, session=self.session)

    def test_satisfies_source_protocols(self) -> None:
        self.assertIsInstance(self.source, QuoteSource)
        self.assertIsInstance(self.source, HistoricalSource)
        self.assertIsInstance(self.source, DailyHistorySource)

    def test_quote_parsing(self) -> None:
        quote = self.source.get_quote('AAA.NS')
        self.assertEqual(quote.price, 102.5)
        self.assertAlmostEqual(quote.change_percent, 2.5)
        self.assertEqual(quote.volume, 5.0)
        self.assertEqual(self.session.requests[0][2], 3.0)

    def test_failed_quotes_are_skipped(self) -> None:
        quotes = self.source.get_quotes(['AAA.NS', 'MISSING.NS', 'AAA.NS'])
        self.assertEqual(list(quotes), ['AAA.NS'])
        with self.assertRaises(DataSourceError):
            self.source.get_quote('MISSING.NS')

    def test_minute_history_sorted_and_cleaned(self) -> None:
        points = self.source.get_minute_history('AAA.NS', '2024-01-15')
        self.assertEqual([p.price for p in points], [100.0, 101.0, 102.5])
        self.assertEqual(points[0].time, pd.Timestamp('2024-01-15 09:30', tz='Asia/Kolkata'))
        self.assertEqual(points[0].volume, 12.0)
        self.assertIsNone(points[2].volume)
        params = self.session.requests[0][1]
        self.assertEqual(params['interval'], '1m')
        self.assertEqual(params['period2'] - params['period1'], 86400)

    def test_daily_history(self) -> None:
        self.session.raw['DAY.NS'] = {'chart': {'result': [{
            'timestamp': [1705030200, 1705289400, 1705375800],
            'indicators': {'quote': [{
                'open': [100.0, 102.0, None],
                'high': [104.0, 106.0, 107.0],
                'low': [99.0, 101.0, 100.0],
                'close': [103.0, 105.0, 101.0],
                'volume': [1000, None, 900],
            }]},
        }]}}
        candles = self.source.get_daily_history('DAY.NS', '2024-01-16')
        self.assertEqual([c.date for c in candles], ['2024-01-12', '2024-01-15'])
        self.assertEqual(candles[0].close, 103.0)
        self.assertEqual(candles[1].volume, 0.0)
        params = self.session.requests[-1][1]
        self.assertEqual(params['interval'], '1d')
        self.assertEqual(params['period2'] - params['period1'], 46 * 86400)

    def test_universe_merges_indian_listings(self) -> None:
        self.assertEqual(self.source.get_universe(50), ['AAA.NS', 'BBB.BO', 'CCC.NS'])

    def test_malformed_payloads_are_isolated(self) -> None:
        self.session.raw = {
            'NONE.NS': {'chart': {'result': [None]}},
            'LIST.NS': [1, 2, 3],
            'META.NS': {'chart': {'result': [{'meta': ['oops']}]}},
            'day_losers': {'finance': {'result': [{'quotes': 7}]}},
        }
        quotes = self.source.get_quotes(['NONE.NS', 'AAA.NS', 'LIST.NS', 'META.NS'])
        self.assertEqual(list(quotes), ['AAA.NS'])
        with self.assertRaises(DataSourceError):
            self.source.get_minute_history('NONE.NS', '2024-01-15')
        self.assertEqual(self.source.get_universe(50), ['AAA.NS', 'BBB.BO', 'CCC.NS'])


class TestCSVDataLoader(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = tmp.name
        folder = os.path.join(self.root, '2024-01-15')
        os.makedirs(folder)
        with open(os.path.join(folder, 'AAA.csv'), 'w', encoding='utf-8') as fh:
            fh.write("Time,Close,Volume\n"
                     "2024-01-15 09:31,101.0,20\n"
                     "2024-01-15 09:30,100.0,10\n"
                     "2024-01-15 09:32,,15\n"
                     "2024-01-15 09:33,103.0,30\n")
        with open(os.path.join(folder, 'BBB.csv'), 'w', encoding='utf-8') as fh:
            fh.write("time,price\n2024-01-15 09:30,50\n2024-01-15 09:31,49\n")
        self.loader = CSVDataLoader(self.root, 'Asia/Kolkata')

    def test_minute_history(self) -> None:
        points = self.loader.get_minute_history('AAA', '2024-01-15')
        self.assertEqual([p.price for p in points], [100.0, 101.0, 103.0])
        self.assertEqual(points[0].time, pd.Timestamp('2024-01-15 09:30', tz='Asia/Kolkata'))
        self.assertEqual(points[-1].volume, 30.0)

    def test_price_column_and_missing_volume(self) -> None:
        points = self.loader.get_minute_history('BBB', '2024-01-15')
        self.assertEqual([p.price for p in points], [50.0, 49.0])
        self.assertIsNone(points[0].volume)

    def test_missing_file_raises(self) -> None:
        with self.assertRaises(DataSourceError):
            self.loader.get_minute_history('ZZZ', '2024-01-15')

    def test_daily_history_aggregates_minutes(self) -> None:
        folder = os.path.join(self.root, '2024-01-12')
        os.makedirs(folder)
        with open(os.path.join(folder, 'AAA.csv'), 'w', encoding='utf-8') as fh:
            fh.write("time,close,volume\n2024-01-12 09:30,98.0,5\n2024-01-12 09:31,99.5,7\n")
        candles = self.loader.get_daily_history('AAA', '2024-01-15')
        self.assertEqual([c.date for c in candles], ['2024-01-12', '2024-01-15'])
        last = candles[-1]
        self.assertEqual((last.open, last.high, last.low, last.close), (100.0, 103.0, 100.0, 103.0))
        self.assertEqual(last.volume, 60.0)
        self.assertEqual(len(self.loader.get_daily_history('AAA', '2024-01-12')), 1)

    def test_universe_and_quotes_from_latest_day(self) -> None:
        self.assertEqual(self.loader.get_universe(10), ['AAA', 'BBB'])
        quotes = self.loader.get_quotes(['AAA', 'ZZZ'])
        self.assertEqual(list(quotes), ['AAA'])
        self.assertEqual(quotes['AAA'].price, 103.0)
        self.assertAlmostEqual(quotes['AAA'].change_percent, 3.0)


if __name__ == '__main__':
    unittest.main()
