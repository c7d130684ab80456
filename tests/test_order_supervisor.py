import os
import sys
from decimal import Decimal

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from momentum_bot.execution.errors import (
    OrderAnomalyError,
    OrderPlacementError,
    OrderTimeoutError,
    TransientExchangeError,
)
from momentum_bot.execution.models import OrderRequest, OrderSide, OrderStatus
from momentum_bot.execution.supervisor import OrderSupervisor

import unittest

OPEN = OrderStatus(id="o-1", status="open")
FILLED = OrderStatus(
    id="o-1",
    status="done",
    done_reason="filled",
    executed_value=Decimal("101.10"),
    fill_fees=Decimal("0.5055"),
    filled_size=Decimal("1"),
)
REQUEST = OrderRequest(OrderSide.BUY, Decimal("101.10"), Decimal("1"), "BTC-USD")


class ScriptedClient:
    """Order client answering status queries from a script.

    Script entries are statuses or exceptions; the last entry repeats.
    """

    def __init__(self, script, cancel_echo=None, place_error=None) -> None:
        self.script = list(script)
        self.cancel_echo = cancel_echo
        self.place_error = place_error
        self.placed = []
        self.status_calls = 0
        self.cancelled = []

    def place_order(self, request):
        if self.place_error is not None:
            raise self.place_error
        self.placed.append(request)
        return "o-1"

    def get_order(self, order_id):
        entry = self.script[min(self.status_calls, len(self.script) - 1)]
        self.status_calls += 1
        if isinstance(entry, Exception):
            raise entry
        return entry

    def cancel_order(self, order_id):
        self.cancelled.append(order_id)
        return order_id if self.cancel_echo is None else self.cancel_echo


class TestOrderSupervisor(unittest.TestCase):
    def _supervisor(self, client, max_polls=5):
        self.sleeps = []
        return OrderSupervisor(client, poll_interval=6.0, max_polls=max_polls, sleep=self.sleeps.append)

    def test_returns_fill_when_order_completes(self) -> None:
        client = ScriptedClient([OPEN, OPEN, FILLED])
        fill = self._supervisor(client).execute(REQUEST)
        self.assertEqual(fill.order_id, "o-1")
        self.assertEqual(fill.executed_value, Decimal("101.10"))
        self.assertEqual(fill.average_price, Decimal("101.10"))
        self.assertEqual(client.status_calls, 3)
        self.assertEqual(self.sleeps, [6.0, 6.0, 6.0])
        self.assertEqual(client.cancelled, [])
        self.assertEqual(len(client.placed), 1)

    def test_cancels_exactly_once_after_poll_budget(self) -> None:
        client = ScriptedClient([OPEN])
        with self.assertRaises(OrderTimeoutError) as ctx:
            self._supervisor(client, max_polls=5).execute(REQUEST)
        self.assertEqual(ctx.exception.order_id, "o-1")
        # five polls, then one read of the cancelled order
        self.assertEqual(client.status_calls, 6)
        self.assertEqual(client.cancelled, ["o-1"])
        self.assertEqual(len(client.placed), 1)

    def test_partial_fill_before_cancel_is_reported(self) -> None:
        partly = OrderStatus(id="o-1", status="open", executed_value=Decimal("50"),
                             fill_fees=Decimal("0.25"), filled_size=Decimal("0.5"))
        client = ScriptedClient([partly])
        with self.assertLogs("momentum_bot.execution.supervisor", level="WARNING"):
            fill = self._supervisor(client, max_polls=3).execute(REQUEST)
        self.assertEqual(client.cancelled, ["o-1"])
        self.assertEqual(fill.filled_size, Decimal("0.5"))
        self.assertEqual(fill.executed_value, Decimal("50"))
        self.assertEqual(fill.fill_fees, Decimal("0.25"))

    def test_unreadable_cancelled_order_is_an_anomaly(self) -> None:
        client = ScriptedClient([OPEN, OPEN, TransientExchangeError("down")])
        with self.assertRaises(OrderAnomalyError):
            self._supervisor(client, max_polls=2).execute(REQUEST)
        self.assertEqual(client.cancelled, ["o-1"])

    def test_done_without_fill_is_an_anomaly(self) -> None:
        rejected = OrderStatus(id="o-1", status="done", done_reason="canceled")
        client = ScriptedClient([OPEN, rejected])
        with self.assertRaises(OrderAnomalyError):
            self._supervisor(client).execute(REQUEST)
        self.assertEqual(client.cancelled, [])

    def test_cancel_echo_mismatch_is_an_anomaly(self) -> None:
        client = ScriptedClient([OPEN], cancel_echo="o-2")
        with self.assertRaises(OrderAnomalyError):
            self._supervisor(client, max_polls=2).execute(REQUEST)
        self.assertEqual(client.cancelled, ["o-1"])

    def test_failed_status_query_keeps_polling(self) -> None:
        client = ScriptedClient([TransientExchangeError("timeout"), OPEN, FILLED])
        with self.assertLogs("momentum_bot.execution.supervisor", level="WARNING"):
            fill = self._supervisor(client).execute(REQUEST)
        self.assertEqual(fill.filled_size, Decimal("1"))
        self.assertEqual(client.status_calls, 3)

    def test_failed_queries_use_up_the_budget(self) -> None:
        down = TransientExchangeError("down")
        client = ScriptedClient([down, down, down, OPEN])
        with self.assertRaises(OrderTimeoutError):
            self._supervisor(client, max_polls=3).execute(REQUEST)
        self.assertEqual(client.cancelled, ["o-1"])

    def test_placement_failure_is_not_retried(self) -> None:
        client = ScriptedClient([FILLED], place_error=OrderPlacementError("insufficient funds"))
        with self.assertRaises(OrderPlacementError):
            self._supervisor(client).execute(REQUEST)
        self.assertEqual(client.status_calls, 0)


if __name__ == '__main__':
    unittest.main()
