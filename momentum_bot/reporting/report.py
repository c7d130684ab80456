"""
Report generation utilities.

This module turns backtest results into human‑readable artefacts:
CSV files of fills and equity curve, a JSON summary of the run and its
performance metrics and a PNG chart of the equity curve.
"""

from __future__ import annotations

import os
import json
from decimal import Decimal
from typing import Any, Dict
import pandas as pd
import matplotlib

# Use non‑interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..execution.backtest_exec import BacktestResult
from .metrics import compute_metrics


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def build_summary(result: BacktestResult) -> Dict[str, Any]:
    """Merge the run summary with the performance metrics."""
    starting = float(result.summary.get('starting_balance', 0))
    summary = {key: _jsonable(value) for key, value in result.summary.items()}
    summary.update(compute_metrics(result.trades, result.equity_curve, starting))
    return summary


def generate_backtest_report(result: BacktestResult, out_dir: str = "results") -> Dict[str, Any]:
    """Generate report files for a backtest run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv` – every buy and sell fill
    - `equity_curve.csv` – equity after each sale
    - `summary.json` – run summary and performance metrics
    - `equity_curve.png` – line chart of the equity curve

    Returns the summary that was written.
    """
    os.makedirs(out_dir, exist_ok=True)

    # Trades CSV
    trades_data = [
        {
            'timestamp': t.ts.isoformat() if t.ts is not None else '',
            'side': t.side.value,
            'price': str(t.price),
            'size': str(t.size),
            'value': str(t.value),
            'fees': str(t.fees),
            'profit': '' if t.profit is None else str(t.profit),
        }
        for t in result.trades
    ]
    df_trades = pd.DataFrame(trades_data, columns=['timestamp', 'side', 'price', 'size', 'value', 'fees', 'profit'])
    trades_path = os.path.join(out_dir, 'trades.csv')
    df_trades.to_csv(trades_path, index=False)

    # Equity curve CSV
    eq_data = [
        {
            'timestamp': pt.timestamp.isoformat() if pt.timestamp is not None else '',
            'step': pt.step,
            'equity': float(pt.equity),
        }
        for pt in result.equity_curve
    ]
    df_eq = pd.DataFrame(eq_data, columns=['timestamp', 'step', 'equity'])
    eq_path = os.path.join(out_dir, 'equity_curve.csv')
    df_eq.to_csv(eq_path, index=False)

    # Summary JSON
    summary = build_summary(result)
    summary_path = os.path.join(out_dir, 'summary.json')
    with open(summary_path, 'w', encoding='utf-8') as fh:
        json.dump(summary, fh, indent=2, ensure_ascii=False)

    # Equity curve plot; x axis is time when the series had timestamps
    fig, ax = plt.subplots(figsize=(10, 4))
    if not df_eq.empty:
        if df_eq['timestamp'].ne('').all():
            ax.plot(pd.to_datetime(df_eq['timestamp']), df_eq['equity'], linewidth=1.5)
            ax.set_xlabel('Time')
            fig.autofmt_xdate()
        else:
            ax.plot(df_eq['step'], df_eq['equity'], linewidth=1.5)
            ax.set_xlabel('Fill')
        ax.set_title('Equity Curve')
        ax.set_ylabel('Equity')
    fig.tight_layout()
    plot_path = os.path.join(out_dir, 'equity_curve.png')
    fig.savefig(plot_path)
    plt.close(fig)
    return summary
