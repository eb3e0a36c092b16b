"""
Historical trial runner.

This module replays recorded minute prices through `evaluate_tick`,
the same function the live engine calls, to produce a deterministic
trade ledger and P&L summary for a past date.  Trials receive an
explicit `StrategyConfig` and never read or modify live engine state.

Symbols are fetched and simulated independently: a symbol whose data
cannot be fetched or simulated is logged and left out, and the rest of
the trial carries on.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.schema import SessionConfig, StrategyConfig
from ..data.sources import HistoricalSource, UniverseSource, clean_points, unique_symbols
from ..utils.timeutils import MarketPhase, market_phase, parse_date_str
from .lifecycle import evaluate_tick, square_off_reason, unrealized_pnl
from .models import Position, PricePoint, Trade, TradeLedger


logger = logging.getLogger(__name__)


@dataclass
class SymbolSimulation:
    """Result of replaying one symbol's series."""
    symbol: str
    points: List[PricePoint]
    trades: List[Trade]
    position: Optional[Position]
    realized_pnl: float
    unrealized_pnl: float

    @property
    def total_pnl(self) -> float:
        return round(self.realized_pnl + self.unrealized_pnl, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'realized_pnl': self.realized_pnl,
            'unrealized_pnl': self.unrealized_pnl,
            'total_pnl': self.total_pnl,
            'trades': [t.to_dict() for t in self.trades],
            'open_position': self.position.to_dict() if self.position else None,
        }


def simulate(
    symbol: str,
    points: Sequence[PricePoint],
    config: StrategyConfig,
    session: Optional[SessionConfig] = None,
    max_points: int = 120,
    preset_id: Optional[str] = None,
) -> SymbolSimulation:
    """Replay `points` for one symbol and return the resulting ledger.

    Parameters
    ----------
    symbol : str
        Symbol being simulated.
    points : sequence of PricePoint
        Ordered minute prices.
    config : StrategyConfig
        Parameters to trade with.
    session : SessionConfig, optional
        When given, points are gated by market phase exactly as the
        live loop gates them: nothing happens before warmup or after
        the close, entries only happen while the market is open and the
        square-off phase forces an exit.
    max_points : int
        History window visible to the entry rules, matching the bound
        the live price store keeps.
    preset_id : str, optional
        Tag copied onto positions and trades.
    """
    history: deque = deque(maxlen=max(2, int(max_points)))
    ledger = TradeLedger()
    position: Optional[Position] = None
    last_price: Optional[float] = None

    for point in points:
        entries_allowed = True
        force_reason = None
        if session is not None:
            phase = market_phase(point.time, session)
            if phase in (MarketPhase.CLOSED, MarketPhase.PRE_OPEN):
                continue
            entries_allowed = phase is MarketPhase.OPEN
            if phase is MarketPhase.SQUARE_OFF:
                force_reason = square_off_reason(session)

        history.append(point)
        last_price = point.price
        result = evaluate_tick(
            symbol, list(history), position, config, point.time, point.price,
            entries_allowed=entries_allowed,
            force_exit_reason=force_reason,
            preset_id=preset_id,
        )
        position = result.position
        ledger.extend(result.trades)

    realized = ledger.realized_pnl()
    unrealized = unrealized_pnl(position, last_price) if position is not None and last_price else 0.0
    return SymbolSimulation(
        symbol=symbol,
        points=list(points),
        trades=ledger.trades,
        position=position,
        realized_pnl=round(realized, 2),
        unrealized_pnl=round(unrealized, 2),
    )


@dataclass
class TrialCandidate:
    symbol: str
    points: List[PricePoint]

    @property
    def intraday_change_percent(self) -> float:
        first, last = self.points[0].price, self.points[-1].price
        return (last - first) / first * 100.0 if first else 0.0


@dataclass
class TrialResult:
    """Aggregated outcome of one trial."""
    date: str
    config: StrategyConfig
    candidates: List[TrialCandidate]
    simulations: List[SymbolSimulation]
    preset_id: Optional[str] = None
    failed_symbols: List[str] = field(default_factory=list)

    @property
    def trades(self) -> List[Trade]:
        trades = [t for sim in self.simulations for t in sim.trades]
        return sorted(trades, key=lambda t: t.time)

    @property
    def total_realized_pnl(self) -> float:
        return round(sum(s.realized_pnl for s in self.simulations), 2)

    @property
    def total_unrealized_pnl(self) -> float:
        return round(sum(s.unrealized_pnl for s in self.simulations), 2)

    @property
    def total_pnl(self) -> float:
        return round(self.total_realized_pnl + self.total_unrealized_pnl, 2)

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            'symbols_tested': len(self.candidates),
            'total_trades': len(self.trades),
            'total_realized_pnl': self.total_realized_pnl,
            'total_unrealized_pnl': self.total_unrealized_pnl,
            'total_pnl': self.total_pnl,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'preset_id': self.preset_id,
            'config': self.config.to_dict(),
            'selected_symbols': [
                {
                    'symbol': c.symbol,
                    'intraday_change_percent': round(c.intraday_change_percent, 2),
                    'candles': len(c.points),
                }
                for c in self.candidates
            ],
            'summary': self.summary,
            'trades': [t.to_dict() for t in self.trades],
            'per_symbol': [s.to_dict() for s in self.simulations],
            'failed_symbols': list(self.failed_symbols),
        }


class HistoricalTrialRunner:
    """Run strategy trials against historical minute data.

    Parameters
    ----------
    source : HistoricalSource
        Supplies minute prices per symbol and date.
    universe : UniverseSource, optional
        Supplies the symbols to test when none are given.
    fallback_symbols : sequence of str
        Used when no universe source is available or it returns too few.
    session : SessionConfig, optional
        Phase gating applied to every simulation.
    max_points : int
        History window passed to `simulate`.
    universe_count : int
        Symbols requested from the universe source.
    min_universe : int
        Minimum universe size accepted before falling back.
    """

    def __init__(
        self,
        source: HistoricalSource,
        universe: Optional[UniverseSource] = None,
        fallback_symbols: Sequence[str] = (),
        session: Optional[SessionConfig] = None,
        max_points: int = 120,
        universe_count: int = 250,
        min_universe: int = 1,
    ) -> None:
        self.source = source
        self.universe = universe
        self.fallback_symbols = list(fallback_symbols)
        self.session = session
        self.max_points = max_points
        self.universe_count = universe_count
        self.min_universe = min_universe

    def resolve_symbols(self, symbols: Optional[Sequence[str]] = None) -> List[str]:
        if symbols:
            return unique_symbols(symbols)
        if self.universe is not None:
            try:
                found = self.universe.get_universe(self.universe_count)
            except Exception as exc:
                logger.warning("Universe lookup failed, using fallback list: %s", exc)
                found = []
            if len(found) >= self.min_universe:
                return unique_symbols(found)
        return unique_symbols(self.fallback_symbols)

    def load_candidates(self, date: str, symbols: Optional[Sequence[str]] = None) -> tuple:
        """Fetch minute series for `date`, ranked by intraday change.

        Returns
        -------
        candidates : list of TrialCandidate
            Symbols with at least two points, best performer first.
        failed : list of str
            Symbols whose fetch raised.
        """
        parse_date_str(date)
        candidates: List[TrialCandidate] = []
        failed: List[str] = []
        for symbol in self.resolve_symbols(symbols):
            try:
                points = clean_points(self.source.get_minute_history(symbol, date))
            except Exception as exc:
                logger.warning("Skipping %s on %s: %s", symbol, date, exc)
                failed.append(symbol)
                continue
            if len(points) < 2:
                logger.debug("Skipping %s on %s: only %d points", symbol, date, len(points))
                continue
            candidates.append(TrialCandidate(symbol, points))
        candidates.sort(key=lambda c: c.intraday_change_percent, reverse=True)
        return candidates, failed

    def run(
        self,
        date: str,
        config: StrategyConfig,
        symbols: Optional[Sequence[str]] = None,
        candidates: Optional[List[TrialCandidate]] = None,
        preset_id: Optional[str] = None,
    ) -> TrialResult:
        """Simulate `config` on `date`.

        Pre-fetched `candidates` may be passed to reuse one download for
        several configurations.
        """
        failed: List[str] = []
        if candidates is None:
            candidates, failed = self.load_candidates(date, symbols)
        if config.selection_limit > 0:
            candidates = candidates[:config.selection_limit]

        simulations: List[SymbolSimulation] = []
        tested: List[TrialCandidate] = []
        for candidate in candidates:
            try:
                sim = simulate(candidate.symbol, candidate.points, config, self.session,
                               self.max_points, preset_id)
            except Exception as exc:
                logger.warning("Simulation failed for %s on %s: %s", candidate.symbol, date, exc)
                failed.append(candidate.symbol)
                continue
            simulations.append(sim)
            tested.append(candidate)

        result = TrialResult(date, config, tested, simulations, preset_id, failed)
        logger.info(
            "Trial %s%s: %d symbols, %d trades, P&L %.2f",
            date, f" [{preset_id}]" if preset_id else "",
            len(tested), len(result.trades), result.total_pnl,
        )
        return result
