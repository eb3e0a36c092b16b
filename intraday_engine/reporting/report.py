"""
Report generation utilities.

This module turns trial results into human-readable artefacts: a CSV of
trades, a CSV of the equity curve, a JSON summary with the trial totals
and performance metrics, and PNG charts (equity curve plus one price
chart per traded symbol with entry and exit markers).
"""

from __future__ import annotations

import json
import os
from typing import List, Optional

import pandas as pd
import matplotlib

# Use non-interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..execution.backtest_exec import SymbolSimulation, TrialResult
from ..execution.models import Action
from .metrics import build_equity_curve, compute_metrics


BUY_MARKERS = (Action.BUY, Action.COVER)
SELL_MARKERS = (Action.SELL, Action.SELL_SHORT)


def _plot_symbol(sim: SymbolSimulation, path: str) -> None:
    fig, ax = plt.subplots(figsize=(10, 4))
    times = [p.time for p in sim.points]
    ax.plot(times, [p.price for p in sim.points], linewidth=1.2, label=sim.symbol)
    buys = [t for t in sim.trades if t.action in BUY_MARKERS]
    sells = [t for t in sim.trades if t.action in SELL_MARKERS]
    price_at = {p.time: p.price for p in sim.points}
    # PUT trades are priced in premium, so markers sit on the underlying price
    if buys:
        ax.scatter([t.time for t in buys], [price_at.get(t.time, t.price) for t in buys],
                   marker='^', color='green', label='buy/cover', zorder=3)
    if sells:
        ax.scatter([t.time for t in sells], [price_at.get(t.time, t.price) for t in sells],
                   marker='v', color='red', label='sell/short', zorder=3)
    ax.set_title(f"{sim.symbol}  P&L {sim.total_pnl:.2f}")
    ax.set_xlabel('Time')
    ax.set_ylabel('Price')
    ax.legend(loc='best')
    fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def generate_trial_report(
    result: TrialResult,
    out_dir: str = "results",
    starting_equity: Optional[float] = None,
    charts: bool = True,
) -> List[str]:
    """Generate report files for a trial run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv` - the time-ordered trade ledger
    - `equity_curve.csv` - account equity after each exit
    - `summary.json` - trial totals and performance metrics
    - `equity_curve.png` and `<SYMBOL>.png` per traded symbol (when
      `charts` is set)

    Returns
    -------
    list of str
        Paths of the written files.
    """
    os.makedirs(out_dir, exist_ok=True)
    capital = result.config.total_capital if starting_equity is None else starting_equity
    trades = result.trades
    written: List[str] = []

    columns = ['time', 'symbol', 'action', 'units', 'price', 'pnl', 'reason', 'preset_id']
    df_trades = pd.DataFrame([t.to_dict() for t in trades], columns=columns)
    trades_path = os.path.join(out_dir, 'trades.csv')
    df_trades.to_csv(trades_path, index=False)
    written.append(trades_path)

    curve = build_equity_curve(trades, capital)
    df_eq = pd.DataFrame(
        [{'timestamp': pt.timestamp.isoformat(), 'equity': pt.equity} for pt in curve],
        columns=['timestamp', 'equity'],
    )
    eq_path = os.path.join(out_dir, 'equity_curve.csv')
    df_eq.to_csv(eq_path, index=False)
    written.append(eq_path)

    summary = {
        'date': result.date,
        'preset_id': result.preset_id,
        'summary': result.summary,
        'metrics': compute_metrics(trades, capital),
        'per_symbol': {
            s.symbol: {'realized_pnl': s.realized_pnl, 'unrealized_pnl': s.unrealized_pnl, 'total_pnl': s.total_pnl}
            for s in result.simulations
        },
        'failed_symbols': result.failed_symbols,
    }
    summary_path = os.path.join(out_dir, 'summary.json')
    with open(summary_path, 'w', encoding='utf-8') as fh:
        json.dump(summary, fh, indent=2, ensure_ascii=False)
    written.append(summary_path)

    if not charts:
        return written

    fig, ax = plt.subplots(figsize=(10, 4))
    if not df_eq.empty:
        ax.plot(pd.to_datetime(df_eq['timestamp']), df_eq['equity'], linewidth=1.5)
        ax.set_title('Equity Curve')
        ax.set_xlabel('Time')
        ax.set_ylabel('Equity')
        fig.autofmt_xdate()
    fig.tight_layout()
    plot_path = os.path.join(out_dir, 'equity_curve.png')
    fig.savefig(plot_path)
    plt.close(fig)
    written.append(plot_path)

    for sim in result.simulations:
        if not sim.trades:
            continue
        path = os.path.join(out_dir, f"{sim.symbol}.png")
        _plot_symbol(sim, path)
        written.append(path)
    return written
