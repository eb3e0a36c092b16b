"""
Performance metrics calculations.

This module provides helpers to compute common performance statistics
from a trade ledger.  Only exit trades (SELL and COVER) carry realised
P&L, so the equity curve steps once per exit.  These metrics are used
for trial reports and preset comparisons.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

import pandas as pd

from ..execution.models import Trade


@dataclass
class EquityPoint:
    """Represents the account equity at a given timestamp."""
    timestamp: pd.Timestamp
    equity: float


def build_equity_curve(trades: Iterable[Trade], starting_equity: float) -> List[EquityPoint]:
    """Cumulate realised P&L of exit trades, in time order."""
    exits = sorted((t for t in trades if t.action.is_exit), key=lambda t: t.time)
    equity = starting_equity
    curve: List[EquityPoint] = []
    for trade in exits:
        equity += trade.pnl or 0.0
        curve.append(EquityPoint(timestamp=trade.time, equity=equity))
    return curve


def compute_metrics(trades: List[Trade], starting_equity: float) -> dict:
    """Compute a set of summary statistics for a trial.

    Parameters
    ----------
    trades : list of Trade
        Full ledger; entries are counted but carry no P&L.
    starting_equity : float
        Capital the trial started with.

    Returns
    -------
    dict
        Dictionary of performance metrics.
    """
    exits = [t for t in trades if t.action.is_exit]
    curve = build_equity_curve(exits, starting_equity)
    if not curve:
        return {
            'total_return': 0.0,
            'max_drawdown': 0.0,
            'sharpe': 0.0,
            'win_rate': 0.0,
            'profit_factor': 0.0,
            'avg_exit_pnl': 0.0,
            'num_trades': len(trades),
            'num_exits': 0,
        }

    ending_equity = curve[-1].equity
    total_return = (ending_equity - starting_equity) / starting_equity if starting_equity else 0.0

    # Compute drawdown
    max_equity = starting_equity
    max_drawdown = 0.0
    for point in curve:
        if point.equity > max_equity:
            max_equity = point.equity
        drawdown = (max_equity - point.equity) / max_equity if max_equity else 0.0
        if drawdown > max_drawdown:
            max_drawdown = drawdown

    # Per-exit returns against starting capital
    pnls = [t.pnl or 0.0 for t in exits]
    returns = [p / starting_equity for p in pnls] if starting_equity else []
    if len(returns) > 1:
        mean_ret = sum(returns) / len(returns)
        variance = sum((r - mean_ret) ** 2 for r in returns) / len(returns)
        std_dev = math.sqrt(variance)
        sharpe = (mean_ret / std_dev) * math.sqrt(len(returns)) if std_dev > 0 else 0.0
    else:
        sharpe = 0.0

    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    gross_loss = -sum(losses)

    return {
        'total_return': total_return,
        'max_drawdown': max_drawdown,
        'sharpe': sharpe,
        'win_rate': len(wins) / len(pnls),
        'profit_factor': sum(wins) / gross_loss if gross_loss > 0 else 0.0,
        'avg_exit_pnl': sum(pnls) / len(pnls),
        'num_trades': len(trades),
        'num_exits': len(exits),
    }
