"""
Post-close preset optimisation and comparison.

After the session closes, the optimiser replays the completed day once
per candidate preset and publishes the parameters of the best one into
the reserved ``AUTO`` preset slot, which is then activated for the
next session.  A preset whose trial raises is recorded as failed and
the comparison carries on with the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.presets import OPTIMIZATION_CANDIDATES, PresetId, StrategyPresetRegistry
from .backtest_exec import HistoricalTrialRunner, TrialResult


logger = logging.getLogger(__name__)


@dataclass
class PresetScore:
    preset_id: PresetId
    name: str
    total_trades: int = 0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    pnl_percent: float = 0.0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'preset_id': self.preset_id.value,
            'name': self.name,
            'total_trades': self.total_trades,
            'realized_pnl': self.realized_pnl,
            'unrealized_pnl': self.unrealized_pnl,
            'total_pnl': self.total_pnl,
            'pnl_percent': self.pnl_percent,
            'error': self.error,
        }


@dataclass
class OptimizationResult:
    date: str
    source_preset_id: PresetId
    source_name: str
    total_pnl: float
    total_trades: int
    scores: List[PresetScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'source_preset_id': self.source_preset_id.value,
            'source_name': self.source_name,
            'total_pnl': self.total_pnl,
            'total_trades': self.total_trades,
            'scores': [s.to_dict() for s in self.scores],
        }


def _score(preset_id: PresetId, name: str, result: TrialResult, capital: float) -> PresetScore:
    total = result.total_pnl
    return PresetScore(
        preset_id=preset_id,
        name=name,
        total_trades=len(result.trades),
        realized_pnl=result.total_realized_pnl,
        unrealized_pnl=result.total_unrealized_pnl,
        total_pnl=total,
        pnl_percent=round(total / capital * 100.0, 2) if capital > 0 else 0.0,
    )


class AdaptiveOptimizer:
    """Select and publish the best preset for a completed session.

    Parameters
    ----------
    runner : HistoricalTrialRunner
        Runner used for every trial.
    registry : StrategyPresetRegistry
        Registry whose AUTO slot is published to.
    """

    def __init__(self, runner: HistoricalTrialRunner, registry: StrategyPresetRegistry) -> None:
        self.runner = runner
        self.registry = registry
        self.generated_date: Optional[str] = None
        self.in_progress = False
        self.last_result: Optional[OptimizationResult] = None
        self.last_error: Optional[str] = None

    def candidate_ids(self) -> List[PresetId]:
        ids = list(OPTIMIZATION_CANDIDATES)
        active = self.registry.active_id
        if active is not PresetId.AUTO and active not in ids:
            ids.append(active)
        return ids

    def score_presets(self, date: str, preset_ids: Sequence[PresetId],
                      symbols: Optional[Sequence[str]] = None) -> List[PresetScore]:
        candidates, _ = self.runner.load_candidates(date, symbols)
        capital = self.registry.base.total_capital
        scores: List[PresetScore] = []
        for preset_id in preset_ids:
            preset = self.registry.get(preset_id)
            try:
                result = self.runner.run(date, preset.config, candidates=candidates, preset_id=preset.id.value)
            except Exception as exc:
                logger.warning("Trial for preset %s on %s failed: %s", preset.id.value, date, exc)
                scores.append(PresetScore(preset.id, preset.name, error=str(exc)))
                continue
            scores.append(_score(preset.id, preset.name, result, capital))
        return scores

    def should_run(self, date: str) -> bool:
        return not self.in_progress and self.generated_date != date

    def optimize(self, date: str, symbols: Optional[Sequence[str]] = None) -> Optional[OptimizationResult]:
        """Trial every candidate on `date` and publish the best to AUTO.

        Runs at most once per date.  Returns `None` when skipped or when
        every candidate failed; in the latter case the active preset is
        left untouched.
        """
        if not self.should_run(date):
            return None
        self.in_progress = True
        self.last_error = None
        try:
            scores = self.score_presets(date, self.candidate_ids(), symbols)
            best: Optional[PresetScore] = None
            for score in scores:
                if score.failed:
                    continue
                if best is None or score.total_pnl > best.total_pnl:
                    best = score
            if best is None:
                self.last_error = f"All preset trials failed for {date}"
                logger.warning(self.last_error)
                self.generated_date = date
                return None

            config = self.registry.config_for(best.preset_id)
            name = f"Auto Optimized ({date}) from {best.preset_id.value}"
            self.registry.publish_auto(name, config)
            self.registry.apply(PresetId.AUTO)
            self.last_result = OptimizationResult(
                date=date,
                source_preset_id=best.preset_id,
                source_name=best.name,
                total_pnl=best.total_pnl,
                total_trades=best.total_trades,
                scores=scores,
            )
            self.generated_date = date
            logger.info("Published %s (P&L %.2f)", name, best.total_pnl)
            return self.last_result
        except Exception as exc:
            self.last_error = str(exc)
            logger.exception("Optimisation for %s failed", date)
            return None
        finally:
            self.in_progress = False

    def status(self) -> Dict[str, Any]:
        return {
            'generated_date': self.generated_date,
            'in_progress': self.in_progress,
            'last_result': self.last_result.to_dict() if self.last_result else None,
            'last_error': self.last_error,
        }


def compare_presets(runner: HistoricalTrialRunner, registry: StrategyPresetRegistry, date: str,
                    symbols: Optional[Sequence[str]] = None) -> List[PresetScore]:
    """Trial every preset on `date`, best total P&L first."""
    optimizer = AdaptiveOptimizer(runner, registry)
    scores = optimizer.score_presets(date, [p.id for p in registry.presets()], symbols)
    return sorted(scores, key=lambda s: (s.failed, -s.total_pnl))
