"""
Order lifecycle supervision.

`OrderSupervisor.execute()` places a limit order once, then polls its
status at a fixed interval until it is filled or the poll budget runs
out, in which case the order is cancelled and read once more: a
time-in-force such as GTC lets an order fill partially before the
cancel, and that part is reported as a fill.  It reports the outcome to
the caller and leaves the position and the checkpoint alone.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from .client import ExchangeClient
from .errors import OrderAnomalyError, OrderTimeoutError, TradingError, TransientExchangeError
from .models import OrderFill, OrderRequest, OrderStatus

logger = logging.getLogger(__name__)


class OrderSupervisor:
    """Drive a limit order to a fill or a cancellation.

    Parameters
    ----------
    client : ExchangeClient
        Exchange the order is placed on.
    poll_interval : float
        Seconds to wait before each status check.
    max_polls : int
        Status checks made before the order is cancelled.
    sleep : callable
        Sleep function, replaceable for replays and tests.
    """

    def __init__(
        self,
        client: ExchangeClient,
        poll_interval: float = 6.0,
        max_polls: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._sleep = sleep

    def execute(self, request: OrderRequest) -> OrderFill:
        """Place `request` and wait for it to fill.

        Returns
        -------
        OrderFill
            Executed value, fees and size of the filled order.  After a
            cancellation this is the partial fill, with `filled_size` below
            the requested size.

        Raises
        ------
        OrderPlacementError
            The exchange did not accept the order.
        OrderTimeoutError
            The order was still open after `max_polls` checks and has been
            cancelled without filling anything.
        OrderAnomalyError
            The order finished without filling, the cancellation was not
            confirmed, or the cancelled order could not be read back.
        """
        logger.info("%s order params: price=%s size=%s product=%s", request.side.value.capitalize(),
                    request.limit_price, request.size, request.product_id)
        order_id = self.client.place_order(request)

        for attempt in range(1, self.max_polls + 1):
            self._sleep(self.poll_interval)
            logger.debug("Checking %s order %s (%d/%d)", request.side.value, order_id, attempt, self.max_polls)
            try:
                status = self.client.get_order(order_id)
            except TransientExchangeError as exc:
                logger.warning("Could not get status of order %s: %s", order_id, exc)
                continue

            if not status.is_done:
                continue
            if status.done_reason != "filled":
                raise OrderAnomalyError(
                    f"{request.side.value} order {order_id} is done without being filled "
                    f"(done_reason: {status.done_reason})"
                )
            if status.filled_size <= 0:
                raise OrderAnomalyError(f"{request.side.value} order {order_id} reported filled with no size")
            fill = self._fill(request, order_id, status)
            logger.info("%s order %s filled: value=%s fees=%s size=%s", request.side.value.capitalize(),
                        order_id, fill.executed_value, fill.fill_fees, fill.filled_size)
            return fill

        self._cancel(order_id)
        final = self._final_status(order_id)
        if final.filled_size > 0:
            fill = self._fill(request, order_id, final)
            logger.warning("%s order %s cancelled after a partial fill: value=%s fees=%s size=%s of %s",
                           request.side.value.capitalize(), order_id, fill.executed_value, fill.fill_fees,
                           fill.filled_size, request.size)
            return fill
        raise OrderTimeoutError(order_id, self.max_polls)

    @staticmethod
    def _fill(request: OrderRequest, order_id: str, status: OrderStatus) -> OrderFill:
        return OrderFill(
            order_id=order_id,
            side=request.side,
            executed_value=status.executed_value,
            fill_fees=status.fill_fees,
            filled_size=status.filled_size,
        )

    def _final_status(self, order_id: str) -> OrderStatus:
        """Read a cancelled order once more; what it filled before the cancel is final."""
        try:
            return self.client.get_order(order_id)
        except TransientExchangeError as exc:
            raise OrderAnomalyError(
                f"Could not read order {order_id} after cancelling it, its fills are unknown: {exc}"
            ) from exc

    def _cancel(self, order_id: str) -> None:
        try:
            echoed = self.client.cancel_order(order_id)
        except TradingError as exc:
            raise OrderAnomalyError(f"Cancelling unfilled order {order_id} failed: {exc}") from exc
        if echoed != order_id:
            raise OrderAnomalyError(
                f"Cancel of order {order_id} returned {echoed!r} instead of the order id"
            )
        logger.info("Order %s was not filled in time and has been cancelled", order_id)
