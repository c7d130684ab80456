import os
import sys
from decimal import Decimal

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from momentum_bot.config.schema import TradingConfig
from momentum_bot.execution.models import OrderSide, Position, ProductInfo
from momentum_bot.strategy.extremes import ExtremeKind, PriceExtremes, track_rally
from momentum_bot.strategy.momentum import MomentumStrategy

import unittest

PRODUCT = ProductInfo("BTC-USD", "BTC", "USD", base_precision=8, quote_precision=2)


class TestBuyTrigger(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = MomentumStrategy(TradingConfig(buy_delta=Decimal("0.01")), PRODUCT)

    def test_buy_fires_when_peak_reaches_threshold(self) -> None:
        extremes = PriceExtremes.starting_at(Decimal("100"))
        decisions = []
        for price in ("100", "100.5", "101"):
            extremes, kind = track_rally(extremes, Decimal(price))
            decisions.append(self.strategy.should_buy(extremes, kind))
        self.assertEqual(decisions, [False, False, True])

    def test_falling_prices_never_buy(self) -> None:
        extremes = PriceExtremes.starting_at(Decimal("100"))
        for price in ("99", "98"):
            extremes, kind = track_rally(extremes, Decimal(price))
            self.assertFalse(self.strategy.should_buy(extremes, kind))

    def test_buy_only_on_new_peak(self) -> None:
        extremes = PriceExtremes(peak=Decimal("102"), valley=Decimal("100"))
        self.assertFalse(self.strategy.should_buy(extremes, ExtremeKind.NO_CHANGE))
        self.assertTrue(self.strategy.should_buy(extremes, ExtremeKind.NEW_PEAK))


class TestSellTrigger(unittest.TestCase):
    def setUp(self) -> None:
        config = TradingConfig(
            sell_delta=Decimal("0.02"),
            min_profit_delta=Decimal("0.01"),
            order_price_delta=Decimal("0.001"),
        )
        self.strategy = MomentumStrategy(config, PRODUCT)
        self.fee = Decimal("0.005")
        self.extremes = PriceExtremes(peak=Decimal("110"), valley=Decimal("107.8"))

    def test_sells_on_two_percent_drop_when_profitable(self) -> None:
        position = Position(True, Decimal("100"), Decimal("100.5"))
        self.assertEqual(self.strategy.required_proceeds(position, self.fee), Decimal("102.51"))
        self.assertTrue(
            self.strategy.should_sell(self.extremes, ExtremeKind.NEW_VALLEY, position, Decimal("1"), self.fee)
        )

    def test_swing_without_profit_does_not_sell(self) -> None:
        position = Position(True, Decimal("106"), Decimal("106.53"))
        self.assertFalse(
            self.strategy.should_sell(self.extremes, ExtremeKind.NEW_VALLEY, position, Decimal("1"), self.fee)
        )

    def test_shallow_drop_does_not_sell(self) -> None:
        position = Position(True, Decimal("50"), Decimal("50.25"))
        extremes = PriceExtremes(peak=Decimal("110"), valley=Decimal("107.81"))
        self.assertFalse(
            self.strategy.should_sell(extremes, ExtremeKind.NEW_VALLEY, position, Decimal("1"), self.fee)
        )

    def test_proceeds_equal_to_requirement_do_not_sell(self) -> None:
        strategy = MomentumStrategy(TradingConfig(sell_delta=Decimal("0.02"), order_price_delta=Decimal("0")), PRODUCT)
        position = Position(True, Decimal("100"), Decimal("100"))
        extremes = PriceExtremes(peak=Decimal("200"), valley=Decimal("100"))
        self.assertFalse(strategy.should_sell(extremes, ExtremeKind.NEW_VALLEY, position, Decimal("1"), Decimal("0")))

    def test_no_sell_without_position_or_new_valley(self) -> None:
        position = Position(True, Decimal("100"), Decimal("100.5"))
        self.assertFalse(
            self.strategy.should_sell(self.extremes, ExtremeKind.NO_CHANGE, position, Decimal("1"), self.fee)
        )
        self.assertFalse(
            self.strategy.should_sell(self.extremes, ExtremeKind.NEW_VALLEY, Position.flat(), Decimal("1"), self.fee)
        )


class TestOrderPricing(unittest.TestCase):
    def test_buy_order_above_peak_within_balance(self) -> None:
        strategy = MomentumStrategy(TradingConfig(order_price_delta=Decimal("0.001")), PRODUCT)
        extremes = PriceExtremes(peak=Decimal("101"), valley=Decimal("100"))
        order = strategy.buy_order(extremes, Decimal("1000"), Decimal("0.005"))
        self.assertIs(order.side, OrderSide.BUY)
        self.assertEqual(order.limit_price, Decimal("101.10"))
        self.assertEqual(order.product_id, "BTC-USD")
        self.assertLessEqual(order.size * order.limit_price, Decimal("995"))
        self.assertEqual(order.size.as_tuple().exponent, -8)

    def test_whole_unit_products_truncate_size(self) -> None:
        product = ProductInfo("XLM-USD", "XLM", "USD", base_precision=0, quote_precision=6)
        strategy = MomentumStrategy(TradingConfig(order_price_delta=Decimal("0")), product)
        extremes = PriceExtremes(peak=Decimal("0.3"), valley=Decimal("0.29"))
        order = strategy.buy_order(extremes, Decimal("100"), Decimal("0"))
        self.assertEqual(order.size, Decimal("333"))

    def test_sell_order_below_valley(self) -> None:
        strategy = MomentumStrategy(TradingConfig(order_price_delta=Decimal("0.001")), PRODUCT)
        extremes = PriceExtremes(peak=Decimal("110"), valley=Decimal("107.8"))
        order = strategy.sell_order(extremes, Decimal("1.234567891"))
        self.assertIs(order.side, OrderSide.SELL)
        self.assertEqual(order.limit_price, Decimal("107.69"))
        self.assertEqual(order.size, Decimal("1.23456789"))


if __name__ == '__main__':
    unittest.main()
