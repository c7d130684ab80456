"""
Momentum trigger rules.

The strategy buys after the price has rallied ``buy_delta`` above the
valley it started from, and sells after it has fallen ``sell_delta``
below the peak, but only when the sale would be profitable after fees
at a deliberately pessimistic execution price.  It also prices and
sizes the limit orders for both sides.
"""

from __future__ import annotations

from decimal import Decimal

from ..config.schema import TradingConfig
from ..execution.models import OrderRequest, OrderSide, Position, ProductInfo
from ..utils.decimals import round_down, round_price
from .extremes import ExtremeKind, PriceExtremes

ONE = Decimal(1)


class MomentumStrategy:
    """Evaluate buy/sell triggers and build the matching limit orders."""

    def __init__(self, config: TradingConfig, product: ProductInfo) -> None:
        self.config = config
        self.product = product

    def buy_target(self, extremes: PriceExtremes) -> Decimal:
        return extremes.valley * (ONE + self.config.buy_delta)

    def sell_target(self, extremes: PriceExtremes) -> Decimal:
        return extremes.peak * (ONE - self.config.sell_delta)

    def should_buy(self, extremes: PriceExtremes, kind: ExtremeKind) -> bool:
        """True when a new peak reaches the buy threshold."""
        return kind is ExtremeKind.NEW_PEAK and extremes.peak >= self.buy_target(extremes)

    def conservative_sell_price(self, extremes: PriceExtremes) -> Decimal:
        return extremes.valley * (ONE - self.config.order_price_delta)

    def projected_proceeds(self, extremes: PriceExtremes, amount: Decimal, fee_rate: Decimal) -> Decimal:
        """Quote received for `amount` at the conservative price, net of fees."""
        gross = self.conservative_sell_price(extremes) * amount
        return gross * (ONE - fee_rate)

    def required_proceeds(self, position: Position, fee_rate: Decimal) -> Decimal:
        """Smallest proceeds a sale must beat: cost plus target profit plus both fee legs."""
        return position.acquired_cost * (ONE + self.config.min_profit_delta + 2 * fee_rate)

    def should_sell(
        self,
        extremes: PriceExtremes,
        kind: ExtremeKind,
        position: Position,
        amount: Decimal,
        fee_rate: Decimal,
    ) -> bool:
        """True when a new valley is deep enough and the sale pays off.

        Parameters
        ----------
        extremes : PriceExtremes
            Current peak and valley of the decline being followed.
        kind : ExtremeKind
            What the latest price did to the extremes.
        position : Position
            The open position, providing the acquisition cost.
        amount : Decimal
            Base currency that would be sold.
        fee_rate : Decimal
            Fee rate applied to the sale.
        """
        if kind is not ExtremeKind.NEW_VALLEY or not position.exists:
            return False
        if extremes.valley > self.sell_target(extremes):
            return False
        return self.projected_proceeds(extremes, amount, fee_rate) > self.required_proceeds(position, fee_rate)

    def buy_order(self, extremes: PriceExtremes, quote_balance: Decimal, fee_rate: Decimal) -> OrderRequest:
        """Limit buy above the peak, spending the balance minus fees."""
        price = round_price(extremes.peak * (ONE + self.config.order_price_delta), self.product.quote_precision)
        to_spend = quote_balance * (ONE - fee_rate)
        size = round_down(to_spend / price, self.product.base_precision)
        return OrderRequest(OrderSide.BUY, price, size, self.product.product_id)

    def sell_order(self, extremes: PriceExtremes, base_balance: Decimal) -> OrderRequest:
        """Limit sell of the whole balance below the valley."""
        price = round_price(self.conservative_sell_price(extremes), self.product.quote_precision)
        size = round_down(base_balance, self.product.base_precision)
        return OrderRequest(OrderSide.SELL, price, size, self.product.product_id)
