"""
Momentum trading engine.

The engine alternates between two cycles.  Without a position it
follows price rallies and buys once the rise from the last valley is
large enough; with a position it follows declines and sells once the
drop from the last peak is large enough and the sale is profitable.
Each cycle starts by refreshing the fee rate and reading the balance
it will trade, and ends when an order fills or is abandoned.

The position only changes after the order supervisor reports a fill,
partial fills included: a partly filled buy opens the position at what
was bought, a partly filled sell keeps it open with the cost of the
unsold part.  Every change is written to the checkpoint before the next cycle
starts.  The same engine runs against the live ticker feed and a real
exchange, or against a replayed price series and the simulated
exchange used for backtests.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from ..config.schema import Config
from ..strategy.extremes import ExtremeKind, PriceExtremes, track_decline, track_rally
from ..strategy.momentum import MomentumStrategy
from .allocation import ProfitAllocator, realized_profit
from .bootstrap import TradingContext
from .client import ExchangeClient
from .errors import AccountStateError, RecoverableOrderError, TransientExchangeError, UnprofitableFillError
from .models import OrderFill, OrderSide, Position, Tick, Trade
from .supervisor import OrderSupervisor
from ..utils.persistence import CheckpointStore

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    FLAT = "flat"
    ACQUIRING = "acquiring"
    HELD = "held"
    DISPOSING = "disposing"


class MomentumEngine:
    """Run the position state machine over a stream of ticks.

    Parameters
    ----------
    config : Config
        Full configuration; the trading, deposit and engine sections are used.
    client : ExchangeClient
        Exchange to read balances and fees from and to trade on.
    context : TradingContext
        Product, account ids, starting position and fee rate resolved at
        startup.
    checkpoint : CheckpointStore, optional
        Where committed positions are saved.  ``None`` disables saving.
    supervisor : OrderSupervisor, optional
        Order supervisor; built from the engine config when omitted.
    """

    def __init__(
        self,
        config: Config,
        client: ExchangeClient,
        context: TradingContext,
        checkpoint: Optional[CheckpointStore] = None,
        supervisor: Optional[OrderSupervisor] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.product = context.product
        self.accounts = context.accounts
        self.position = context.position
        self.fee_rate = context.fee_rate
        self.checkpoint = checkpoint
        self.strategy = MomentumStrategy(config.trading, self.product)
        self.supervisor = supervisor or OrderSupervisor(
            client,
            poll_interval=config.engine.poll_interval,
            max_polls=config.engine.max_polls,
        )
        self.allocator = ProfitAllocator(
            client,
            config.deposit,
            self.product,
            self.accounts.trading_profile_id,
            self.accounts.deposit_profile_id,
        )
        self.state = EngineState.HELD if self.position.exists else EngineState.FLAT
        self.trades: List[Trade] = []
        self.deposited = Decimal("0")
        self.last_tick: Optional[Tick] = None

    def run(self, ticks: Iterable[Tick]) -> None:
        """Trade until `ticks` is exhausted (never, for a live feed).

        Fatal errors propagate to the caller.
        """
        stream = iter(ticks)
        while True:
            try:
                if self.position.exists:
                    live = self._distribution_cycle(stream)
                else:
                    live = self._accumulation_cycle(stream)
            except TransientExchangeError as exc:
                logger.warning("Could not start a trading cycle, retrying on the next tick: %s", exc)
                live = self._next_tick(stream) is not None
            if not live:
                logger.info("Price feed exhausted, stopping in state %s", self.state.value)
                return

    def _next_tick(self, stream: Iterator[Tick]) -> Optional[Tick]:
        tick = next(stream, None)
        if tick is not None:
            self.last_tick = tick
        return tick

    def _refresh_fee_rate(self) -> None:
        if self.config.trading.fee_rate is not None:
            self.fee_rate = self.config.trading.fee_rate
            return
        try:
            self.fee_rate = self.client.get_fees().highest
        except TransientExchangeError as exc:
            logger.warning("Keeping fee rate %s, refresh failed: %s", self.fee_rate, exc)

    def _accumulation_cycle(self, stream: Iterator[Tick]) -> bool:
        """Wait for a rally and buy.  Returns False once the feed is exhausted."""
        self._refresh_fee_rate()
        quote = self.product.quote_currency
        available = self.client.get_account(self.accounts.quote_account_id).available
        balance = available - self.config.trading.balance_minimum
        if balance <= 0:
            raise AccountStateError(
                f"There is no {quote} balance available for use ({available} available, "
                f"{self.config.trading.balance_minimum} kept aside)"
            )

        start = self._next_tick(stream)
        if start is None:
            return False
        extremes = PriceExtremes.starting_at(start.price)
        logger.info("Entering gain position with %s %s at price %s", balance, quote, start.price)

        for tick in stream:
            self.last_tick = tick
            extremes, kind = track_rally(extremes, tick.price)
            if kind is ExtremeKind.NEW_PEAK:
                logger.debug("Buy position, peak %s needs to reach %s to buy",
                             extremes.peak, self.strategy.buy_target(extremes))
            if not self.strategy.should_buy(extremes, kind):
                continue

            logger.info("Attempting to buy position at peak %s (valley %s)", extremes.peak, extremes.valley)
            request = self.strategy.buy_order(extremes, balance, self.fee_rate)
            if request.size <= 0:
                raise AccountStateError(f"{balance} {quote} is too little to buy at {request.limit_price}")
            self.state = EngineState.ACQUIRING
            try:
                fill = self.supervisor.execute(request)
            except RecoverableOrderError as exc:
                logger.warning("Buy attempt abandoned, watching for the next rally: %s", exc)
                self.state = EngineState.FLAT
                return True
            if fill.filled_size < request.size:
                logger.warning("Bought %s of %s before the order was cancelled, holding the part filled",
                               fill.filled_size, request.size)
            self._commit_buy(fill, tick)
            return True
        return False

    def _distribution_cycle(self, stream: Iterator[Tick]) -> bool:
        """Wait for a profitable decline and sell.  Returns False once the feed is exhausted."""
        self._refresh_fee_rate()
        base = self.product.base_currency
        amount = self.client.get_account(self.accounts.base_account_id).available
        if amount <= 0:
            raise AccountStateError(f"There is no {base} balance available for use while a position is open")

        start = self._next_tick(stream)
        if start is None:
            return False
        extremes = PriceExtremes.starting_at(start.price)
        logger.info("Entering lose position with %s %s at price %s", amount, base, start.price)

        for tick in stream:
            self.last_tick = tick
            extremes, kind = track_decline(extremes, tick.price)
            if kind is ExtremeKind.NEW_VALLEY:
                logger.debug(
                    "Sell position, valley %s needs to reach %s and proceeds %s need to beat %s",
                    extremes.valley,
                    self.strategy.sell_target(extremes),
                    self.strategy.projected_proceeds(extremes, amount, self.fee_rate),
                    self.strategy.required_proceeds(self.position, self.fee_rate),
                )
            if not self.strategy.should_sell(extremes, kind, self.position, amount, self.fee_rate):
                continue

            logger.info("Attempting to sell position at valley %s (peak %s)", extremes.valley, extremes.peak)
            request = self.strategy.sell_order(extremes, amount)
            if request.size <= 0:
                raise AccountStateError(
                    f"{amount} {base} is below the smallest order size of {self.product.product_id}"
                )
            self.state = EngineState.DISPOSING
            try:
                fill = self.supervisor.execute(request)
            except RecoverableOrderError as exc:
                logger.warning("Sell attempt abandoned, watching for the next decline: %s", exc)
                self.state = EngineState.HELD
                return True
            self._commit_sell(fill, request.size, tick)
            return True
        return False

    def _commit(self, position: Position) -> None:
        self.position = position
        if self.checkpoint is None:
            return
        try:
            self.checkpoint.save(position)
        except OSError as exc:
            logger.error("Failed to write the checkpoint, continuing with in-memory state: %s", exc)

    def _commit_buy(self, fill: OrderFill, tick: Tick) -> None:
        position = Position(
            exists=True,
            acquired_price=fill.average_price,
            acquired_cost=fill.executed_value + fill.fill_fees,
        )
        self._commit(position)
        self.state = EngineState.HELD
        self.trades.append(Trade(
            side=OrderSide.BUY,
            price=fill.average_price,
            size=fill.filled_size,
            value=fill.executed_value,
            fees=fill.fill_fees,
            ts=tick.ts,
        ))
        logger.info("Bought position: %s", position.to_dict())

    def _commit_sell(self, fill: OrderFill, requested_size: Decimal, tick: Tick) -> None:
        if fill.filled_size < requested_size:
            # the unsold part keeps its share of the cost
            sold_fraction = fill.filled_size / requested_size
            profit = realized_profit(fill, self.position, sold_fraction)
            remaining = Position(
                exists=True,
                acquired_price=self.position.acquired_price,
                acquired_cost=self.position.acquired_cost - self.position.acquired_cost * sold_fraction,
            )
            self._commit(remaining)
            self.state = EngineState.HELD
            logger.warning("Sold %s of %s, position kept for the rest: %s",
                           fill.filled_size, requested_size, remaining.to_dict())
        else:
            profit = realized_profit(fill, self.position)
            # The sale has happened whatever the profit turned out to be
            self._commit(Position.flat())
            self.state = EngineState.FLAT
        self.trades.append(Trade(
            side=OrderSide.SELL,
            price=fill.average_price,
            size=fill.filled_size,
            value=fill.executed_value,
            fees=fill.fill_fees,
            ts=tick.ts,
            profit=profit,
        ))
        logger.info("Sold position, profit: %s", profit)
        if profit <= 0:
            raise UnprofitableFillError(profit)
        self.deposited += self.allocator.allocate(profit)
