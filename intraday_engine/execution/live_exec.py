"""
Live (paper) trading engine.

`LiveEngine` owns every piece of mutable trading state: the selected
basket, the price history, the open positions, the trade ledger and
the daily risk control.  Each call to `run_cycle` performs one pass:

1. roll the daily control and load today's price history;
2. resolve the market phase (outside trading hours, maybe run the
   post-close optimiser and return);
3. rebuild the basket when needed;
4. fetch quotes for the basket and every open position;
5. run the daily loss check;
6. evaluate every tracked symbol with `evaluate_tick`;
7. persist state (debounced, forced after trades).

Orders are simulated only; nothing is sent to a broker.  A cycle that
raises is recorded in `last_error` and the next cycle proceeds
normally.  Persistence failures are logged and the engine keeps running
in memory.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from ..config.presets import Preset, PresetId, StrategyPresetRegistry, UnknownPresetError, parse_preset_id
from ..config.schema import Config, StrategyConfig
from ..data.history import PriceHistoryStore
from ..data.sources import DailyHistorySource, HistoricalSource, Quote, QuoteSource, UniverseSource, unique_symbols
from ..strategy.shortlist import PremarketShortlist, premarket_shortlist
from ..strategy.trend import has_downtrend, has_uptrend
from ..strategy.universe import SymbolUniverseSelector
from ..utils.persistence import DebouncedJsonWriter, load_state
from ..utils.timeutils import (
    MarketPhase,
    is_post_close_window,
    market_phase,
    parse_date_str,
    previous_market_date,
    trading_date,
)
from .backtest_exec import HistoricalTrialRunner, TrialCandidate, TrialResult
from .lifecycle import cutoff_reason, evaluate_tick, exit_position, square_off_reason, unrealized_pnl
from .models import Action, DailyControl, Position, PricePoint, Trade, TradeLedger
from .optimizer import AdaptiveOptimizer, PresetScore, compare_presets
from .risk import DailyRiskController


logger = logging.getLogger(__name__)

MANUAL_EXIT_REASON = "Manual sell: user booked profit"
SNAPSHOT_TRADES = 100
MONITOR_TRADES = 60
MOVE_WINDOWS = (1, 3, 6, 10)


def _utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC")


class LiveEngine:
    """Drive the strategy on live quotes.

    Parameters
    ----------
    config : Config
        Loaded application configuration.
    quotes : QuoteSource
        Source of current prices.
    history_source : HistoricalSource, optional
        Source of minute history for trials and the post-close
        optimiser.  Without it both are unavailable.
    universe : UniverseSource, optional
        Screener supplying candidate symbols.  The static candidate list
        from the configuration is used when it is missing or returns
        fewer than `top_n` symbols.
    clock : callable, optional
        Returns the current time as a tz-aware `pandas.Timestamp`.
    registry : StrategyPresetRegistry, optional
        Preset registry; built from ``config.strategy`` when omitted.
    """

    def __init__(
        self,
        config: Config,
        quotes: QuoteSource,
        history_source: Optional[HistoricalSource] = None,
        universe: Optional[UniverseSource] = None,
        clock: Callable[[], pd.Timestamp] = _utc_now,
        registry: Optional[StrategyPresetRegistry] = None,
    ) -> None:
        self.config = config
        self.session = config.session
        self.quotes = quotes
        self.history_source = history_source
        self.universe = universe
        self.clock = clock
        self.registry = registry or StrategyPresetRegistry(config.strategy, config.engine.active_preset)

        state_dir = Path(config.engine.state_dir)
        self.state_path = state_dir / "live-state.json"
        self.history = PriceHistoryStore(
            config.engine.history_max_points,
            directory=str(state_dir / "price-history"),
            save_interval_seconds=config.engine.history_save_interval_seconds,
        )
        self._state_writer = DebouncedJsonWriter(str(self.state_path), config.engine.state_save_interval_seconds)
        self.selector = SymbolUniverseSelector(
            top_n=self.registry.base.top_n,
            rotation_window_minutes=config.engine.rotation_window_minutes,
        )
        self.risk = DailyRiskController(self.registry.base, self.session.timezone)
        self.positions: Dict[str, Position] = {}
        self.ledger = TradeLedger()

        self.runner: Optional[HistoricalTrialRunner] = None
        self.optimizer: Optional[AdaptiveOptimizer] = None
        if history_source is not None:
            self.runner = HistoricalTrialRunner(
                history_source,
                universe=universe,
                fallback_symbols=config.data.candidate_symbols,
                session=self.session,
                max_points=config.engine.history_max_points,
                universe_count=config.data.screener_count,
                min_universe=self.registry.base.top_n,
            )
            self.optimizer = AdaptiveOptimizer(self.runner, self.registry)

        self.last_run: Optional[pd.Timestamp] = None
        self.last_error: Optional[str] = None
        self.cycle_count = 0
        self.market_source = "fallback-static"
        self.market_universe: List[str] = []
        self._state_loaded = False

    # ------------------------------------------------------------------
    # Resource handling
    # ------------------------------------------------------------------
    def __enter__(self) -> "LiveEngine":
        self.load_state()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.flush()

    def load_state(self) -> bool:
        """Restore positions, trades and preset state from disk."""
        self._state_loaded = True
        try:
            payload = load_state(str(self.state_path))
        except (OSError, ValueError) as exc:
            self._record_error(f"Failed to load live state: {exc}")
            return False
        if not payload:
            return False

        auto = payload.get('auto_preset')
        if isinstance(auto, dict) and auto.get('config'):
            try:
                self.registry.publish_auto(auto.get('name') or "Auto Optimized",
                                           StrategyConfig.from_dict(auto['config']))
            except (TypeError, ValueError) as exc:
                logger.warning("Ignoring saved auto preset: %s", exc)
        active = payload.get('active_preset_id')
        if active:
            try:
                self.registry.apply(active)
            except UnknownPresetError as exc:
                logger.warning("Ignoring saved preset: %s", exc)

        self.positions = {}
        for raw in payload.get('open_positions') or []:
            try:
                position = Position.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable position %s: %s", raw, exc)
                continue
            if position.remaining_units > 0:
                self.positions[position.symbol] = position

        trades = []
        for raw in payload.get('trades') or []:
            try:
                trades.append(Trade.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable trade %s: %s", raw, exc)
        self.ledger = TradeLedger(trades)

        daily = payload.get('daily_control') or {}
        self.risk.control = DailyControl(daily.get('date'), bool(daily.get('cutoff_hit', False)))
        logger.info("Restored %d open positions and %d trades", len(self.positions), len(self.ledger))
        return True

    def state_dict(self) -> Dict[str, Any]:
        auto = self.registry.get(PresetId.AUTO)
        return {
            'saved_at': _utc_now().isoformat(),
            'active_preset_id': self.registry.active_id.value,
            'auto_preset': {'name': auto.name, 'config': auto.config.to_dict()},
            'open_positions': [p.to_dict() for p in self.positions.values()],
            'trades': [t.to_dict() for t in self.ledger],
            'daily_control': {'date': self.risk.control.date, 'cutoff_hit': self.risk.control.cutoff_hit},
        }

    def _persist(self, force: bool = False) -> None:
        try:
            self.history.save(force=force)
            self._state_writer.flush(self.state_dict, force=force)
        except OSError as exc:
            self._record_error(f"Failed to persist state: {exc}")

    def flush(self) -> None:
        """Force every pending write to disk."""
        self._persist(force=True)

    def _record_error(self, message: str) -> None:
        logger.error(message)
        self.last_error = message

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def _market_symbols(self) -> List[str]:
        top_n = self.registry.base.top_n
        if self.universe is not None:
            try:
                symbols = unique_symbols(self.universe.get_universe(self.config.data.screener_count))
            except Exception as exc:
                logger.warning("Universe lookup failed: %s", exc)
                symbols = []
            if len(symbols) >= top_n:
                self.market_source = "screener"
                self.market_universe = symbols
                return symbols
        self.market_source = "fallback-static"
        self.market_universe = list(self.config.data.candidate_symbols)
        return self.market_universe

    def _reselect(self, now: pd.Timestamp, today: str, config: StrategyConfig) -> None:
        candidates = self._market_symbols()
        quotes = self.quotes.get_quotes(candidates)
        self.selector.select(
            quotes.values(), today, now, len(self.ledger),
            config.capital_per_slot, config.selection_limit,
        )

    def _maybe_optimize(self, now: pd.Timestamp, today: str) -> None:
        if self.optimizer is None:
            return
        if self.session.weekdays_only and parse_date_str(today).weekday() >= 5:
            return
        delay = self.config.engine.post_close_optimization_delay_minutes
        if not is_post_close_window(now, self.session, delay) or not self.optimizer.should_run(today):
            return
        logger.info("Running post-close optimisation for %s", today)
        self.optimizer.optimize(today)
        self._state_writer.mark_dirty()

    def _record_trades(self, trades: Sequence[Trade]) -> bool:
        recorded = False
        for trade in trades:
            if self.ledger.append(trade):
                recorded = True
        return recorded

    def run_cycle(self) -> bool:
        """Run one engine pass.  Returns `False` if the cycle failed."""
        now = self.clock()
        try:
            if not self._state_loaded:
                self.load_state()
            today = trading_date(now, self.session.timezone)
            self.risk.roll(today)
            self.history.load_day(today)
            phase = market_phase(now, self.session)

            if phase in (MarketPhase.PRE_OPEN, MarketPhase.CLOSED):
                if phase is MarketPhase.CLOSED:
                    self._maybe_optimize(now, today)
                self._finish_cycle(now, traded=False)
                return True

            config = self.registry.config
            if self.selector.needs_reselect(now, today, phase, len(self.ledger)):
                self._reselect(now, today, config)

            tracked = unique_symbols(list(self.selector.symbols) + list(self.positions))
            quotes: Dict[str, Quote] = self.quotes.get_quotes(tracked) if tracked else {}
            for symbol in tracked:
                quote = quotes.get(symbol)
                if quote is not None and quote.price > 0:
                    self.history.append(symbol, PricePoint(now, quote.price, quote.volume))

            prices = {s: q.price for s, q in quotes.items()}
            cutoff = self.risk.check(today, self.ledger, self.positions.values(), prices)
            entries_allowed = phase is MarketPhase.OPEN and not cutoff
            if cutoff:
                force_reason: Optional[str] = cutoff_reason(self.registry.base)
            elif phase is MarketPhase.SQUARE_OFF:
                force_reason = square_off_reason(self.session)
            else:
                force_reason = None

            preset_id = self.registry.active_id.value
            selected = set(self.selector.symbols)
            traded = False
            for symbol in tracked:
                quote = quotes.get(symbol)
                if quote is None:
                    continue
                position = self.positions.get(symbol)
                if position is None and symbol not in selected:
                    continue
                result = evaluate_tick(
                    symbol, self.history.get(symbol), position, config, now, quote.price,
                    entries_allowed=entries_allowed and symbol in selected,
                    force_exit_reason=force_reason,
                    preset_id=preset_id,
                )
                if result.position is None:
                    self.positions.pop(symbol, None)
                else:
                    self.positions[symbol] = result.position
                traded = self._record_trades(result.trades) or traded

            self._finish_cycle(now, traded=traded)
            return True
        except Exception as exc:
            logger.exception("Engine cycle failed")
            self.last_run = now
            self.last_error = str(exc) or exc.__class__.__name__
            return False

    def _finish_cycle(self, now: pd.Timestamp, traded: bool) -> None:
        self.last_run = now
        self.cycle_count += 1
        self.last_error = None
        if traded:
            self._state_writer.mark_dirty()
        self._persist(force=traded)

    def run(self, max_cycles: Optional[int] = None, sleep: Callable[[float], None] = time.sleep) -> None:
        """Run cycles every ``engine.interval_seconds`` until interrupted.

        Each cycle completes before the next one is scheduled, so cycles
        never overlap.  Press Ctrl+C to stop.
        """
        interval = max(1, int(self.config.engine.interval_seconds))
        logger.info("Starting live engine (interval=%ss, preset=%s)", interval, self.registry.active_id.value)
        cycles = 0
        try:
            while max_cycles is None or cycles < max_cycles:
                self.run_cycle()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                sleep(interval)
        except KeyboardInterrupt:
            logger.info("Shutting down live engine...")
        finally:
            self.flush()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def _exit_price(self, symbol: str, quotes: Dict[str, Quote]) -> Optional[float]:
        quote = quotes.get(symbol)
        if quote is not None and quote.price > 0:
            return quote.price
        latest = self.history.latest(symbol)
        return latest.price if latest is not None else None

    def _close(self, symbol: str, quotes: Dict[str, Quote], reason: str) -> bool:
        position = self.positions.get(symbol)
        price = self._exit_price(symbol, quotes)
        if position is None or price is None or price <= 0:
            return False
        remaining, trade = exit_position(position, price, self.clock(), reason)
        if remaining is None:
            self.positions.pop(symbol, None)
        if trade is not None:
            self._record_trades([trade])
        return True

    def force_close(self, symbol: str, reason: str = MANUAL_EXIT_REASON) -> Dict[str, Any]:
        """Close the position on `symbol` at the current price."""
        symbol = (symbol or "").strip()
        if not symbol:
            return {'symbol': symbol, 'sold': False, 'reason': "Symbol is required"}
        if symbol not in self.positions:
            return {'symbol': symbol, 'sold': False, 'reason': "No active position"}
        quotes = self.quotes.get_quotes([symbol])
        if not self._close(symbol, quotes, reason):
            return {'symbol': symbol, 'sold': False, 'reason': "No valid exit price"}
        self._persist(force=True)
        return {'symbol': symbol, 'sold': True, 'reason': reason}

    def force_close_all(self, reason: str = MANUAL_EXIT_REASON) -> Dict[str, Any]:
        """Close every open position; symbols without a price are skipped."""
        symbols = list(self.positions)
        if not symbols:
            return {'requested': 0, 'sold': 0, 'skipped': []}
        quotes = self.quotes.get_quotes(symbols)
        skipped = [s for s in symbols if not self._close(s, quotes, reason)]
        self._persist(force=True)
        return {'requested': len(symbols), 'sold': len(symbols) - len(skipped), 'skipped': skipped}

    def apply_preset(self, preset_id: str) -> Dict[str, Any]:
        """Activate a preset.  Unknown ids raise `UnknownPresetError`."""
        preset = self.registry.apply(parse_preset_id(preset_id))
        self._state_writer.mark_dirty()
        self._persist(force=True)
        return preset.to_dict()

    def _require_runner(self) -> HistoricalTrialRunner:
        if self.runner is None:
            raise RuntimeError("No historical data source configured")
        return self.runner

    def run_trial(self, date: Optional[str] = None, preset_id: Optional[str] = None,
                  symbols: Optional[Sequence[str]] = None) -> TrialResult:
        """Replay `date` (default today) with a preset (default active)."""
        runner = self._require_runner()
        date = date or trading_date(self.clock(), self.session.timezone)
        preset = self.registry.get(preset_id) if preset_id else self.registry.active
        return runner.run(date, preset.config, symbols=symbols, preset_id=preset.id.value)

    def compare_presets(self, date: Optional[str] = None,
                        symbols: Optional[Sequence[str]] = None) -> List[PresetScore]:
        date = date or trading_date(self.clock(), self.session.timezone)
        return compare_presets(self._require_runner(), self.registry, date, symbols)

    def premarket_shortlist(self, date: Optional[str] = None) -> PremarketShortlist:
        """Score the market universe on `date` (default the previous market day)."""
        source = self.history_source
        if not isinstance(source, DailyHistorySource):
            raise RuntimeError("Configured data source has no daily candles")
        date = date or previous_market_date(trading_date(self.clock(), self.session.timezone))
        return premarket_shortlist(source, self._market_symbols(), date)

    def _live_monitor_row(self, preset: Preset, day: str) -> Dict[str, Any]:
        active = self.registry.active_id.value
        trades = [
            t for t in self.ledger
            if (t.preset_id or active) == preset.id.value and trading_date(t.time, self.session.timezone) == day
        ]
        positions = [p for p in self.positions.values() if (p.preset_id or active) == preset.id.value]
        realized = sum(t.pnl or 0.0 for t in trades if t.action.is_exit)
        unrealized = 0.0
        for position in positions:
            latest = self.history.latest(position.symbol)
            if latest is not None:
                unrealized += unrealized_pnl(position, latest.price)
        return {
            'total_trades': len(trades),
            'realized_pnl': round(realized, 2),
            'unrealized_pnl': round(unrealized, 2),
            'total_pnl': round(realized + unrealized, 2),
            'open_positions': [p.to_dict() for p in positions],
            'recent_trades': [t.to_dict() for t in trades[-MONITOR_TRADES:]],
            'data_source': "live-engine",
        }

    def _trial_monitor_row(self, preset: Preset, day: str, candidates: List[TrialCandidate]) -> Dict[str, Any]:
        result = self._require_runner().run(day, preset.config, candidates=candidates, preset_id=preset.id.value)
        return {
            'total_trades': len(result.trades),
            'realized_pnl': result.total_realized_pnl,
            'unrealized_pnl': result.total_unrealized_pnl,
            'total_pnl': result.total_pnl,
            'open_positions': [s.position.to_dict() for s in result.simulations if s.position is not None],
            'recent_trades': [t.to_dict() for t in result.trades[-MONITOR_TRADES:]],
            'data_source': "history-trial",
        }

    def strategy_monitor(self, date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Report every preset's P&L on `date` (default today).

        For today, the active preset is read from the live ledger and
        open positions; every other preset, and every preset on other
        dates, is replayed on shared minute history.  A preset whose
        replay fails gets a row with `error` set.
        """
        today = trading_date(self.clock(), self.session.timezone)
        day = date or today
        parse_date_str(day)
        capital = self.registry.base.total_capital
        candidates: Optional[List[TrialCandidate]] = None

        rows = []
        for preset in self.registry.presets():
            row: Dict[str, Any] = {'preset_id': preset.id.value, 'name': preset.name, 'error': None}
            try:
                if day == today and preset.id is self.registry.active_id:
                    row.update(self._live_monitor_row(preset, day))
                else:
                    if candidates is None:
                        candidates, _ = self._require_runner().load_candidates(day)
                    row.update(self._trial_monitor_row(preset, day, candidates))
            except Exception as exc:
                logger.warning("Monitor failed for %s on %s: %s", preset.id.value, day, exc)
                row['error'] = str(exc) or exc.__class__.__name__
                rows.append(row)
                continue
            row['pnl_percent'] = round(row['total_pnl'] / capital * 100.0, 2) if capital > 0 else 0.0
            rows.append(row)
        return rows

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------
    def _selected_rows(self, config: StrategyConfig) -> List[Dict[str, Any]]:
        rows = []
        for symbol in self.selector.symbols:
            history = self.history.get(symbol)
            latest = history[-1] if history else None
            position = self.positions.get(symbol)
            row: Dict[str, Any] = {
                'symbol': symbol,
                'current_price': round(latest.price, 2) if latest else None,
                'uptrend': has_uptrend(history, config.buy_rise_minutes, config.trend_strength_threshold),
                'downtrend': has_downtrend(history, config.short_fall_minutes, config.trend_strength_threshold),
                'has_open_position': position is not None,
                'position_side': position.side.value if position else None,
                'entry_price': round(position.entry_price, 2) if position else None,
                'remaining_units': position.remaining_units if position else 0,
            }
            for minutes in MOVE_WINDOWS:
                row[f'move_{minutes}m_percent'] = round(self.history.change_percent_over_minutes(symbol, minutes), 2)
            rows.append(row)
        return rows

    def _summary(self, day: str) -> Dict[str, float]:
        realized = self.ledger.realized_pnl()
        unrealized = 0.0
        for position in self.positions.values():
            latest = self.history.latest(position.symbol)
            if latest is not None:
                unrealized += unrealized_pnl(position, latest.price)
        traded_amount = sum(abs(t.price * t.units) for t in self.ledger)
        invested_today = sum(
            abs(t.price * t.units) for t in self.ledger
            if t.action in (Action.BUY, Action.SELL_SHORT)
            and trading_date(t.time, self.session.timezone) == day
        )
        total = realized + unrealized
        summary = {
            'realized_pnl': round(realized, 2),
            'unrealized_pnl': round(unrealized, 2),
            'total_pnl': round(total, 2),
            'traded_amount': round(traded_amount, 2),
            'today_invested_amount': round(invested_today, 2),
            'open_account_amount': round(self.registry.base.total_capital + total, 2),
        }
        summary.update(self.risk.summary(day, self.ledger))
        return summary

    def get_snapshot(self) -> Dict[str, Any]:
        """Return a JSON-serialisable view of the engine state."""
        config = self.registry.config
        day = self.risk.control.date or trading_date(self.clock(), self.session.timezone)
        return {
            'config': config.to_dict(),
            'status': {
                'last_run': self.last_run.isoformat() if self.last_run is not None else None,
                'cycle_count': self.cycle_count,
                'last_error': self.last_error,
                'market_source': self.market_source,
                'market_universe_size': len(self.market_universe),
                'daily_date': day,
                'daily_loss_cutoff_hit': self.risk.cutoff_hit,
                'active_preset_id': self.registry.active_id.value,
                'active_preset_name': self.registry.active.name,
                'adaptive': self.optimizer.status() if self.optimizer else None,
            },
            'selected': self._selected_rows(config),
            'open_positions': [p.to_dict() for p in self.positions.values()],
            'trades': [t.to_dict() for t in reversed(self.ledger.trades[-SNAPSHOT_TRADES:])],
            'summary': self._summary(day),
        }
