"""
Application entry point.

This module defines a simple command-line interface for running the
engine in its different modes:

- ``live``      run the paper-trading loop on live quotes;
- ``trial``     replay one past date with a preset and write a report;
- ``optimize``  run the post-close optimiser for a date and publish AUTO;
- ``compare``   trial every preset on a date and rank them;
- ``monitor``   report every preset's P&L on a date (live for today);
- ``shortlist`` score the universe on the previous day's daily candles;
- ``presets``   list the available presets.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config.schema import Config, load_config
from .data.csv_data import CSVDataLoader
from .data.mt5_data import MT5DataFeed
from .data.yahoo_data import YahooChartSource
from .execution.live_exec import LiveEngine
from .reporting.report import generate_trial_report
from .utils.timeutils import parse_date_str, previous_market_date, trading_date


logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def build_source(config: Config):
    """Create the market data adapter named by ``data.source``."""
    tz = config.session.timezone
    if config.data.source == 'mt5':
        feed = MT5DataFeed(config.mt5, tz)
        feed.connect()
        return feed
    if config.data.source == 'csv':
        return CSVDataLoader(config.data.csv_dir, tz)
    return YahooChartSource(tz, timeout=config.data.request_timeout)


def _default_trial_date(engine: LiveEngine) -> str:
    today = trading_date(engine.clock(), engine.session.timezone)
    return previous_market_date(today)


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command-line arguments and dispatch to the appropriate mode."""
    parser = argparse.ArgumentParser(description="Intraday Trend Engine")
    parser.add_argument('mode', choices=['live', 'trial', 'optimize', 'compare', 'monitor', 'shortlist', 'presets'], help="Operating mode")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    parser.add_argument('--date', help="Trading date (YYYY-MM-DD); defaults to the previous market day")
    parser.add_argument('--preset', help="Preset id (S1-S5, AUTO); defaults to the active preset")
    parser.add_argument('--out', default='results', help="Output directory for trial reports")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    config = load_config(args.config)
    if args.date:
        parse_date_str(args.date)

    source = build_source(config)
    engine = LiveEngine(config, quotes=source, history_source=source, universe=source)
    try:
        with engine:
            if args.preset and args.mode in ('live', 'optimize'):
                engine.apply_preset(args.preset)

            if args.mode == 'presets':
                for preset in engine.registry.presets():
                    marker = '*' if preset.id is engine.registry.active_id else ' '
                    logger.info("%s %-4s %s (%s)", marker, preset.id.value, preset.name, preset.config.entry_rule.value)

            elif args.mode == 'live':
                logger.info("Starting paper trading with %s data...", config.data.source)
                engine.run()

            elif args.mode == 'trial':
                date = args.date or _default_trial_date(engine)
                logger.info("Running trial for %s...", date)
                result = engine.run_trial(date, preset_id=args.preset)
                generate_trial_report(result, out_dir=args.out)
                logger.info("Trial complete: %s. Results saved to the '%s' directory.", result.summary, args.out)

            elif args.mode == 'optimize':
                date = args.date or _default_trial_date(engine)
                outcome = engine.optimizer.optimize(date)
                if outcome is None:
                    logger.warning("Optimisation produced no result: %s", engine.optimizer.last_error)
                else:
                    logger.info("AUTO preset now follows %s (P&L %.2f)", outcome.source_preset_id.value, outcome.total_pnl)

            elif args.mode == 'compare':
                date = args.date or _default_trial_date(engine)
                for row in engine.compare_presets(date):
                    if row.failed:
                        logger.info("%-4s %-28s failed: %s", row.preset_id.value, row.name, row.error)
                    else:
                        logger.info("%-4s %-28s trades=%3d  P&L=%9.2f  (%.2f%%)", row.preset_id.value, row.name,
                                    row.total_trades, row.total_pnl, row.pnl_percent)

            elif args.mode == 'monitor':
                for row in engine.strategy_monitor(args.date):
                    if row['error']:
                        logger.info("%-4s %-28s failed: %s", row['preset_id'], row['name'], row['error'])
                    else:
                        logger.info("%-4s %-28s [%s] trades=%3d  P&L=%9.2f  (%.2f%%)", row['preset_id'], row['name'],
                                    row['data_source'], row['total_trades'], row['total_pnl'], row['pnl_percent'])

            elif args.mode == 'shortlist':
                shortlist = engine.premarket_shortlist(args.date)
                logger.info("Shortlist for %s: %d of %d symbols scored", shortlist.date,
                            shortlist.evaluated, shortlist.universe_size)
                for label, rows, attr in (('LONG', shortlist.long_candidates, 'long_score'),
                                          ('SHORT', shortlist.short_candidates, 'short_score')):
                    for c in rows:
                        logger.info("%-5s %-14s score=%7.2f  change=%6.2f%%  volume x%.2f", label, c.symbol,
                                    getattr(c, attr), c.day_change_percent, c.volume_spike)
    finally:
        close = getattr(source, 'close', None)
        if close is not None:
            close()


if __name__ == '__main__':
    main()
