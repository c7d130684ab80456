"""
Backtest execution engine.

This module contains the `BacktestEngine` class which replays a
historical price series through the same `MomentumEngine` used for live
trading.  Orders go to `SimulatedExchange`, an in-memory exchange that
fills every limit order at its limit price on the first status check
and charges a flat fee rate.  The result lists the fills, an equity
curve sampled after each sale and a summary of the run.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pandas as pd

from ..config.schema import Config
from ..data.csv_data import CSVPriceLoader
from ..data.feed import ReplayPriceFeed
from .bootstrap import bootstrap
from .client import ExchangeClient
from .engine import MomentumEngine
from .errors import ConfigurationError, OrderPlacementError
from .models import (
    Account,
    FeeSchedule,
    OrderRequest,
    OrderSide,
    OrderStatus,
    ProductInfo,
    Profile,
    Tick,
    Trade,
)
from .supervisor import OrderSupervisor
from ..utils.decimals import precision_from_increment

logger = logging.getLogger(__name__)

TRADING_PROFILE_ID = "sim-trading"
DEPOSIT_PROFILE_ID = "sim-deposit"


@dataclass
class _SimOrder:
    request: OrderRequest
    status: str = "open"


class SimulatedExchange(ExchangeClient):
    """In-memory exchange holding one trading and one deposit profile.

    Parameters
    ----------
    product : ProductInfo
        The only product that can be traded.
    starting_balance : Decimal
        Quote currency initially available in the trading profile.
    fee_rate : Decimal
        Maker and taker fee rate charged on each fill.
    trading_profile, deposit_profile : str
        Profile names, matching the deposit configuration.
    """

    def __init__(
        self,
        product: ProductInfo,
        starting_balance: Decimal,
        fee_rate: Decimal,
        trading_profile: str = "default",
        deposit_profile: str = "deposit",
    ) -> None:
        self.product = product
        self.fee_rate = fee_rate
        self.profiles = [
            Profile(id=TRADING_PROFILE_ID, name=trading_profile),
            Profile(id=DEPOSIT_PROFILE_ID, name=deposit_profile),
        ]
        self.balances: Dict[str, Dict[str, Decimal]] = {
            TRADING_PROFILE_ID: {product.base_currency: Decimal("0"), product.quote_currency: starting_balance},
            DEPOSIT_PROFILE_ID: {product.base_currency: Decimal("0"), product.quote_currency: Decimal("0")},
        }
        self.orders: Dict[str, _SimOrder] = {}
        self.transfers: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    def _account_id(self, currency: str) -> str:
        return f"{TRADING_PROFILE_ID}-{currency}"

    def place_order(self, request: OrderRequest) -> str:
        if request.product_id != self.product.product_id:
            raise OrderPlacementError(f"Unknown product {request.product_id}")
        if request.size <= 0:
            raise OrderPlacementError("Order size must be positive")
        wallet = self.balances[TRADING_PROFILE_ID]
        value = request.limit_price * request.size
        if request.side is OrderSide.BUY and value * (1 + self.fee_rate) > wallet[self.product.quote_currency]:
            raise OrderPlacementError("Insufficient funds")
        if request.side is OrderSide.SELL and request.size > wallet[self.product.base_currency]:
            raise OrderPlacementError("Insufficient funds")
        order_id = f"sim-{next(self._ids)}"
        self.orders[order_id] = _SimOrder(request)
        return order_id

    def _settle(self, request: OrderRequest, size: Decimal) -> None:
        """Move balances for `size` of `request` filled at its limit price."""
        wallet = self.balances[TRADING_PROFILE_ID]
        value = request.limit_price * size
        fees = value * self.fee_rate
        if request.side is OrderSide.BUY:
            wallet[self.product.quote_currency] -= value + fees
            wallet[self.product.base_currency] += size
        else:
            wallet[self.product.base_currency] -= size
            wallet[self.product.quote_currency] += value - fees

    def get_order(self, order_id: str) -> OrderStatus:
        order = self.orders[order_id]
        if order.status == "cancelled":
            return OrderStatus(id=order_id, status="done", done_reason="canceled")
        if order.status == "open":
            self._settle(order.request, order.request.size)
            order.status = "done"
        value = order.request.limit_price * order.request.size
        return OrderStatus(
            id=order_id,
            status="done",
            done_reason="filled",
            executed_value=value,
            fill_fees=value * self.fee_rate,
            filled_size=order.request.size,
        )

    def cancel_order(self, order_id: str) -> str:
        self.orders[order_id].status = "cancelled"
        return order_id

    def get_account(self, account_id: str) -> Account:
        for account in self.get_accounts():
            if account.id == account_id:
                return account
        raise KeyError(account_id)

    def get_accounts(self) -> List[Account]:
        return [
            Account(id=self._account_id(currency), currency=currency, available=amount, balance=amount)
            for currency, amount in self.balances[TRADING_PROFILE_ID].items()
        ]

    def get_fees(self) -> FeeSchedule:
        return FeeSchedule(maker_fee_rate=self.fee_rate, taker_fee_rate=self.fee_rate)

    def get_profiles(self) -> List[Profile]:
        return list(self.profiles)

    def get_product(self, product_id: str) -> ProductInfo:
        if product_id != self.product.product_id:
            raise ConfigurationError(f"Could not find a product pair named {product_id!r}")
        return self.product

    def transfer_funds(self, from_profile: str, to_profile: str, currency: str, amount: Decimal) -> Any:
        self.balances[from_profile][currency] -= amount
        self.balances[to_profile][currency] += amount
        record = {"from": from_profile, "to": to_profile, "currency": currency, "amount": amount}
        self.transfers.append(record)
        return record

    def equity(self, price: Decimal) -> Decimal:
        """Quote value of both profiles, base holdings sold at `price` net of fees."""
        total = Decimal("0")
        for wallet in self.balances.values():
            total += wallet[self.product.quote_currency]
            total += wallet[self.product.base_currency] * price * (1 - self.fee_rate)
        return total


@dataclass
class EquityPoint:
    """Represents the account equity after a sale."""
    timestamp: Optional[pd.Timestamp]
    step: int
    equity: Decimal


@dataclass
class BacktestResult:
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)


class BacktestEngine:
    """Replay historical prices through the momentum engine."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.loader = CSVPriceLoader(config.backtest.csv_path, config.backtest.price_column)

    def simulated_product(self) -> ProductInfo:
        return ProductInfo(
            product_id=self.config.exchange.product_id,
            base_currency=self.config.exchange.base_currency,
            quote_currency=self.config.exchange.quote_currency,
            base_precision=precision_from_increment(self.config.backtest.base_increment),
            quote_precision=precision_from_increment(self.config.backtest.quote_increment),
        )

    def run(self, ticks: Optional[List[Tick]] = None) -> BacktestResult:
        """Execute the backtest.

        Parameters
        ----------
        ticks : list of Tick, optional
            Price series to replay.  Loaded from the configured CSV file
            when omitted.

        Returns
        -------
        BacktestResult
            Fills, equity after each sale and summary figures.
        """
        if ticks is None:
            ticks = self.loader.load()
        starting_balance = self.config.backtest.starting_balance
        exchange = SimulatedExchange(
            self.simulated_product(),
            starting_balance,
            self.config.backtest.fee_rate,
            trading_profile=self.config.deposit.trading_profile,
            deposit_profile=self.config.deposit.deposit_profile,
        )
        context = bootstrap(self.config, exchange, checkpoint=None)
        supervisor = OrderSupervisor(exchange, poll_interval=0.0, max_polls=self.config.engine.max_polls,
                                     sleep=lambda _: None)
        engine = MomentumEngine(self.config, exchange, context, checkpoint=None, supervisor=supervisor)

        engine.run(ReplayPriceFeed(ticks).ticks())

        result = BacktestResult(trades=list(engine.trades))
        # after a sale everything is back in quote currency, so equity is
        # the starting balance plus the profit of every completed round trip
        equity = starting_balance
        for step, trade in enumerate(result.trades, start=1):
            if trade.side is OrderSide.SELL:
                equity += trade.profit
                result.equity_curve.append(EquityPoint(timestamp=trade.ts, step=step, equity=equity))

        last_price = ticks[-1].price if ticks else Decimal("0")
        final_equity = exchange.equity(last_price) if ticks else starting_balance
        result.summary = {
            'number_of_buys': sum(1 for t in result.trades if t.side is OrderSide.BUY),
            'number_of_sells': sum(1 for t in result.trades if t.side is OrderSide.SELL),
            'profit_generated': final_equity - starting_balance,
            'amount_deposited': engine.deposited,
            'position_open': engine.position.exists,
            'starting_balance': starting_balance,
            'final_equity': final_equity,
        }
        logger.info("Backtest finished: %s", result.summary)
        return result

