"""
Error hierarchy for the trading engine.

Errors fall into three groups that decide how far they propagate:

- transient errors (failed read calls) are retried by the client and,
  when they still surface, logged by the caller which keeps going;
- recoverable order errors (timeout, rejected placement) end the current
  accumulation or distribution cycle, which then starts over from the
  last stable state;
- fatal errors mean the exchange and the engine disagree about what
  happened, or the setup is unusable.  They stop the run.
"""

from __future__ import annotations

from decimal import Decimal


class TradingError(Exception):
    """Base class for every error raised by the bot."""


class TransientExchangeError(TradingError):
    """A read call kept failing after its retry budget was spent."""


class CheckpointError(TradingError):
    """The checkpoint file exists but cannot be read or parsed."""


class RecoverableOrderError(TradingError):
    """The order attempt failed but the position is unchanged."""


class OrderTimeoutError(RecoverableOrderError):
    """The order was not filled within the poll budget and was cancelled."""

    def __init__(self, order_id: str, attempts: int) -> None:
        super().__init__(f"Order {order_id} not filled after {attempts} status checks, cancelled")
        self.order_id = order_id
        self.attempts = attempts


class OrderPlacementError(RecoverableOrderError):
    """The exchange refused or failed to accept a new order."""


class FatalTradingError(TradingError):
    """Unsafe to continue; the process should stop."""


class OrderAnomalyError(FatalTradingError):
    """An order ended in a state the engine cannot reconcile."""


class UnprofitableFillError(FatalTradingError):
    """A sell filled without making a profit."""

    def __init__(self, profit: Decimal) -> None:
        super().__init__(f"Sell was not profitable, profit: {profit}")
        self.profit = profit


class ConfigurationError(FatalTradingError):
    """Invalid configuration or unresolvable product, account or profile."""


class AccountStateError(FatalTradingError):
    """The account holds no balance to trade with."""
