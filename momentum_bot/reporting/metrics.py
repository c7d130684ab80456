"""
Round-trip statistics for backtest reports.

Every sell closes a position and carries its realized profit, so the
statistics below are taken over sells only.  Buys contribute their fees
and nothing else.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List

import pandas as pd

from ..execution.backtest_exec import EquityPoint
from ..execution.models import OrderSide, Trade


def _max_drawdown(equity: pd.Series, starting_equity: float) -> float:
    """Largest fall from a running high, as a fraction of that high."""
    curve = pd.concat([pd.Series([starting_equity]), equity], ignore_index=True)
    highs = curve.cummax()
    drawdowns = (highs - curve) / highs.where(highs != 0)
    return float(drawdowns.fillna(0.0).max())


def compute_metrics(trades: List[Trade], equity_curve: List[EquityPoint], starting_equity: float) -> Dict[str, Any]:
    """Summarise the round trips of a backtest.

    Parameters
    ----------
    trades : list of Trade
        Fills in execution order.
    equity_curve : list of EquityPoint
        Equity after each sale.
    starting_equity : float
        Quote balance the run started with.

    Returns
    -------
    dict
        ``total_return``, ``max_drawdown``, ``sharpe`` (per round trip,
        scaled by the square root of their number), ``win_rate``,
        ``avg_trade``, ``profit_factor``, ``total_fees`` and
        ``num_round_trips``.
    """
    total_fees = float(sum((t.fees for t in trades), 0))
    sells = [t for t in trades if t.side is OrderSide.SELL and t.profit is not None]
    metrics: Dict[str, Any] = {
        'total_return': 0.0,
        'max_drawdown': 0.0,
        'sharpe': 0.0,
        'win_rate': 0.0,
        'avg_trade': 0.0,
        'profit_factor': 0.0,
        'total_fees': total_fees,
        'num_round_trips': len(sells),
    }
    if not sells or not equity_curve:
        return metrics

    equity = pd.Series([float(p.equity) for p in equity_curve])
    profits = pd.Series([float(s.profit) for s in sells])
    # what each position cost, recovered from the sale it ended in
    costs = pd.Series([float(s.value - s.fees - s.profit) for s in sells])
    returns = (profits / costs.where(costs != 0)).dropna()

    if starting_equity:
        metrics['total_return'] = float((equity.iloc[-1] - starting_equity) / starting_equity)
    metrics['max_drawdown'] = _max_drawdown(equity, starting_equity)
    if len(returns) > 1 and returns.std(ddof=0) > 0:
        metrics['sharpe'] = float(returns.mean() / returns.std(ddof=0) * math.sqrt(len(returns)))
    metrics['win_rate'] = float((profits > 0).mean())
    metrics['avg_trade'] = float(profits.mean())
    losses = -profits[profits < 0].sum()
    gains = profits[profits > 0].sum()
    # undefined without a losing round trip
    metrics['profit_factor'] = float(gains / losses) if losses > 0 else None
    return metrics
