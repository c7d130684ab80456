"""
Realized profit and profit allocation.

After a sell fills, the profit is the quote value received minus the
fees of the sale minus everything the position cost to acquire.  When
depositing is enabled a share of that profit is moved from the trading
profile to the deposit profile.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ..config.schema import DepositConfig
from .client import ExchangeClient
from .errors import TradingError
from .models import OrderFill, Position, ProductInfo
from ..utils.decimals import round_down

logger = logging.getLogger(__name__)


def realized_profit(fill: OrderFill, position: Position, sold_fraction: Decimal = Decimal("1")) -> Decimal:
    """Profit of selling `position` through `fill`, net of both fee legs.

    When only part of the position was sold, `sold_fraction` of the
    acquisition cost is charged against the proceeds.
    """
    return fill.executed_value - fill.fill_fees - position.acquired_cost * sold_fraction


class ProfitAllocator:
    """Transfer a share of realized profit to the deposit profile."""

    def __init__(
        self,
        client: ExchangeClient,
        config: DepositConfig,
        product: ProductInfo,
        trading_profile_id: str,
        deposit_profile_id: Optional[str],
    ) -> None:
        self.client = client
        self.config = config
        self.product = product
        self.trading_profile_id = trading_profile_id
        self.deposit_profile_id = deposit_profile_id

    def transfer_amount(self, profit: Decimal) -> Decimal:
        return round_down(profit * self.config.share_fraction, self.product.quote_precision)

    def allocate(self, profit: Decimal) -> Decimal:
        """Deposit the configured share of `profit`.

        Returns the amount transferred, zero when nothing was moved.  A
        failed transfer is logged and reported as zero: the sale it comes
        from is already committed.
        """
        if not self.config.enabled or profit <= 0 or self.deposit_profile_id is None:
            return Decimal("0")
        amount = self.transfer_amount(profit)
        if amount <= 0:
            logger.info("Profit share %s rounds to nothing, no deposit made", profit * self.config.share_fraction)
            return Decimal("0")
        try:
            result = self.client.transfer_funds(
                self.trading_profile_id,
                self.deposit_profile_id,
                self.product.quote_currency,
                amount,
            )
        except TradingError as exc:
            logger.error("Depositing %s %s failed, profit stays in the trading profile: %s",
                         amount, self.product.quote_currency, exc)
            return Decimal("0")
        logger.info("Deposited %s %s of %s profit", amount, self.product.quote_currency, profit)
        logger.debug("Transfer result: %s", result)
        return amount
