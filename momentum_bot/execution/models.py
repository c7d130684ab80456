"""
Position, order and account models.

These dataclasses represent the objects passed between the strategy,
the order supervisor, the exchange clients and the engine.  Keeping
them in a separate module improves readability and makes unit testing
easier.  Money and price fields are ``Decimal`` throughout.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import pandas as pd


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Position:
    """The engine's record of the current holdings.

    ``acquired_price`` and ``acquired_cost`` are only defined while a
    position exists.  The asset amount itself is read from the account
    balance when needed.
    """

    exists: bool = False
    acquired_price: Optional[Decimal] = None
    acquired_cost: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if self.exists:
            if self.acquired_price is None or self.acquired_cost is None:
                raise ValueError("An open position needs an acquired price and cost")
            if self.acquired_price < 0 or self.acquired_cost < 0:
                raise ValueError("Acquired price and cost must be non-negative")

    @classmethod
    def flat(cls) -> "Position":
        return cls(exists=False)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the checkpoint JSON layout."""
        if not self.exists:
            return {'exists': False}
        return {
            'exists': True,
            'acquiredPrice': str(self.acquired_price),
            'acquiredCost': str(self.acquired_cost),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        if not data.get('exists'):
            return cls.flat()
        return cls(
            exists=True,
            acquired_price=Decimal(str(data['acquiredPrice'])),
            acquired_cost=Decimal(str(data['acquiredCost'])),
        )


@dataclass(frozen=True)
class ProductInfo:
    """Static description of the traded pair.

    ``base_precision`` and ``quote_precision`` are numbers of decimal
    places allowed for order sizes and prices respectively.
    """

    product_id: str
    base_currency: str
    quote_currency: str
    base_precision: int
    quote_precision: int


@dataclass(frozen=True)
class OrderRequest:
    side: OrderSide
    limit_price: Decimal
    size: Decimal
    product_id: str


@dataclass(frozen=True)
class OrderStatus:
    """Status snapshot of an order as reported by the exchange."""

    id: str
    status: str  # 'open' or 'done'
    done_reason: Optional[str] = None
    executed_value: Decimal = Decimal("0")
    fill_fees: Decimal = Decimal("0")
    filled_size: Decimal = Decimal("0")

    @property
    def is_done(self) -> bool:
        return self.status == "done"


@dataclass(frozen=True)
class OrderFill:
    """A limit order that reached ``done`` with ``done_reason=filled``."""

    order_id: str
    side: OrderSide
    executed_value: Decimal
    fill_fees: Decimal
    filled_size: Decimal

    @property
    def average_price(self) -> Decimal:
        return self.executed_value / self.filled_size


@dataclass(frozen=True)
class Account:
    id: str
    currency: str
    available: Decimal
    balance: Decimal


@dataclass(frozen=True)
class Profile:
    id: str
    name: str


@dataclass(frozen=True)
class FeeSchedule:
    maker_fee_rate: Decimal
    taker_fee_rate: Decimal

    @property
    def highest(self) -> Decimal:
        return max(self.maker_fee_rate, self.taker_fee_rate)


@dataclass(frozen=True)
class AccountIds:
    """Account and profile ids resolved at startup."""

    base_account_id: str
    quote_account_id: str
    trading_profile_id: str
    deposit_profile_id: Optional[str] = None


@dataclass(frozen=True)
class Tick:
    """A price sample from a live or replayed feed."""

    price: Decimal
    ts: Optional[pd.Timestamp] = None


@dataclass
class Trade:
    """Represents a completed fill."""
    side: OrderSide
    price: Decimal
    size: Decimal
    value: Decimal
    fees: Decimal
    ts: Optional[pd.Timestamp] = None
    profit: Optional[Decimal] = None  # sells only
