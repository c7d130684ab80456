import os
import sys
from decimal import Decimal

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from momentum_bot.execution.backtest_exec import EquityPoint
from momentum_bot.execution.models import OrderSide, Trade
from momentum_bot.reporting.metrics import compute_metrics

import unittest


def _sell(profit, value="110", fees="0"):
    return Trade(OrderSide.SELL, Decimal(value), Decimal("1"), Decimal(value), Decimal(fees), profit=Decimal(profit))


class TestComputeMetrics(unittest.TestCase):
    def test_no_round_trips(self) -> None:
        buy = Trade(OrderSide.BUY, Decimal("100"), Decimal("1"), Decimal("100"), Decimal("0.5"))
        metrics = compute_metrics([buy], [], 1000.0)
        self.assertEqual(metrics['num_round_trips'], 0)
        self.assertEqual(metrics['total_fees'], 0.5)
        self.assertEqual(metrics['win_rate'], 0.0)

    def test_win_and_loss(self) -> None:
        trades = [_sell("10"), _sell("-5")]
        curve = [EquityPoint(None, 1, Decimal("1010")), EquityPoint(None, 2, Decimal("1005"))]
        metrics = compute_metrics(trades, curve, 1000.0)
        self.assertAlmostEqual(metrics['total_return'], 0.005)
        self.assertAlmostEqual(metrics['max_drawdown'], 5 / 1010)
        self.assertEqual(metrics['win_rate'], 0.5)
        self.assertAlmostEqual(metrics['avg_trade'], 2.5)
        self.assertAlmostEqual(metrics['profit_factor'], 2.0)
        self.assertEqual(metrics['num_round_trips'], 2)

    def test_profit_factor_undefined_without_losses(self) -> None:
        metrics = compute_metrics([_sell("10")], [EquityPoint(None, 1, Decimal("1010"))], 1000.0)
        self.assertIsNone(metrics['profit_factor'])
        self.assertEqual(metrics['max_drawdown'], 0.0)


if __name__ == '__main__':
    unittest.main()
