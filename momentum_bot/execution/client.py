"""
Exchange client capability set.

`ExchangeClient` lists the calls the engine makes against an exchange.
`CoinbaseExchangeClient` implements them on Coinbase Exchange through
ccxt.  It talks to the raw REST endpoints rather than ccxt's unified
order structures because the engine relies on Coinbase's own fill
fields (``done_reason``, ``executed_value``, ``fill_fees``,
``filled_size``).

Read calls are idempotent and retried immediately a few times before a
`TransientExchangeError` is raised; an order the exchange no longer
knows is reported as cancelled without fills instead.  Placing and cancelling orders and
transferring funds change state on the exchange and are never retried.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

import ccxt

from ..config.schema import ExchangeConfig
from .errors import ConfigurationError, OrderPlacementError, TransientExchangeError
from .models import Account, FeeSchedule, OrderRequest, OrderStatus, ProductInfo, Profile
from ..utils.decimals import precision_from_increment, to_decimal

logger = logging.getLogger(__name__)

READ_ATTEMPTS = 3

T = TypeVar("T")


class ExchangeClient(ABC):
    """Calls the trading engine needs from an exchange."""

    @abstractmethod
    def place_order(self, request: OrderRequest) -> str:
        """Place a limit order and return its id."""

    @abstractmethod
    def get_order(self, order_id: str) -> OrderStatus:
        """Return the current status of an order."""

    @abstractmethod
    def cancel_order(self, order_id: str) -> str:
        """Cancel an order and return the id the exchange echoes back."""

    @abstractmethod
    def get_account(self, account_id: str) -> Account:
        ...

    @abstractmethod
    def get_accounts(self) -> List[Account]:
        ...

    @abstractmethod
    def get_fees(self) -> FeeSchedule:
        ...

    @abstractmethod
    def get_profiles(self) -> List[Profile]:
        ...

    @abstractmethod
    def get_product(self, product_id: str) -> ProductInfo:
        """Describe a product pair.

        Raises
        ------
        ConfigurationError
            If the exchange does not list the pair.
        """

    @abstractmethod
    def transfer_funds(self, from_profile: str, to_profile: str, currency: str, amount: Decimal) -> Any:
        """Move funds between two profiles of the same user."""

    def refresh(self) -> None:
        """Re-create any session state.  No-op by default."""


class CoinbaseExchangeClient(ExchangeClient):
    """Coinbase Exchange client wrapping ccxt's ``coinbaseexchange``."""

    def __init__(self, config: ExchangeConfig, time_in_force: str = "GTC") -> None:
        self.config = config
        self.time_in_force = time_in_force
        self.exchange: Optional[ccxt.Exchange] = None
        self._markets_loaded = False
        self.refresh()

    def refresh(self) -> None:
        """Build a fresh ccxt instance so stale sessions are dropped."""
        exchange_class = getattr(ccxt, self.config.name, None)
        if exchange_class is None:
            raise ConfigurationError(f"Unknown exchange: {self.config.name}")
        params: Dict[str, Any] = {"enableRateLimit": True}
        if self.config.api_key:
            params["apiKey"] = self.config.api_key
            params["secret"] = self.config.api_secret
            params["password"] = self.config.api_passphrase
        self.exchange = exchange_class(params)
        if self.config.sandbox:
            self.exchange.set_sandbox_mode(True)
        self._markets_loaded = False
        logger.info(
            "Connected to %s (sandbox=%s, authenticated=%s)",
            self.config.name,
            self.config.sandbox,
            bool(self.config.api_key),
        )

    def _read(self, name: str, call: Callable[[], T]) -> T:
        """Run an idempotent read, retrying immediately on ccxt errors."""
        attempt = 1
        while True:
            try:
                return call()
            except ccxt.OrderNotFound:
                raise
            except ccxt.BaseError as exc:
                if attempt >= READ_ATTEMPTS:
                    logger.error("%s failed after %d attempts: %s", name, attempt, exc)
                    # start the next call from a clean session
                    self.refresh()
                    raise TransientExchangeError(f"{name} failed: {exc}") from exc
                logger.debug("%s attempt %d failed: %s", name, attempt, exc)
                attempt += 1

    def place_order(self, request: OrderRequest) -> str:
        params = {
            "side": request.side.value,
            "price": str(request.limit_price),
            "size": str(request.size),
            "product_id": request.product_id,
            "type": "limit",
            "time_in_force": self.time_in_force,
        }
        logger.info("LIMIT %s %s size=%s price=%s", request.side.value.upper(), request.product_id,
                    request.size, request.limit_price)
        try:
            response = self.exchange.private_post_orders(params)
        except ccxt.BaseError as exc:
            raise OrderPlacementError(f"Placing {request.side.value} order failed: {exc}") from exc
        logger.debug("Order placed: %s", response)
        return str(response["id"])

    def get_order(self, order_id: str) -> OrderStatus:
        try:
            raw = self._read("get_order", lambda: self.exchange.private_get_orders_id({"id": order_id}))
        except ccxt.OrderNotFound:
            # Coinbase drops cancelled orders that filled nothing
            logger.debug("Order %s not found, treating it as cancelled without fills", order_id)
            return OrderStatus(id=order_id, status="done", done_reason="canceled")
        return OrderStatus(
            id=str(raw.get("id", order_id)),
            status=str(raw.get("status", "")),
            done_reason=raw.get("done_reason"),
            executed_value=to_decimal(raw.get("executed_value")),
            fill_fees=to_decimal(raw.get("fill_fees")),
            filled_size=to_decimal(raw.get("filled_size")),
        )

    def cancel_order(self, order_id: str) -> str:
        logger.info("CANCEL order %s", order_id)
        try:
            response = self.exchange.private_delete_orders_id({"id": order_id})
        except ccxt.BaseError as exc:
            raise TransientExchangeError(f"Cancelling order {order_id} failed: {exc}") from exc
        # Coinbase answers with the bare id string
        if isinstance(response, dict):
            return str(response.get("id", ""))
        return str(response)

    @staticmethod
    def _account(raw: Dict[str, Any]) -> Account:
        return Account(
            id=str(raw["id"]),
            currency=str(raw["currency"]),
            available=to_decimal(raw.get("available")),
            balance=to_decimal(raw.get("balance")),
        )

    def get_account(self, account_id: str) -> Account:
        raw = self._read("get_account", lambda: self.exchange.private_get_accounts_id({"id": account_id}))
        return self._account(raw)

    def get_accounts(self) -> List[Account]:
        raw = self._read("get_accounts", self.exchange.private_get_accounts)
        return [self._account(item) for item in raw]

    def get_fees(self) -> FeeSchedule:
        raw = self._read("get_fees", self.exchange.private_get_fees)
        return FeeSchedule(
            maker_fee_rate=to_decimal(raw.get("maker_fee_rate")),
            taker_fee_rate=to_decimal(raw.get("taker_fee_rate")),
        )

    def get_profiles(self) -> List[Profile]:
        raw = self._read("get_profiles", self.exchange.private_get_profiles)
        return [Profile(id=str(item["id"]), name=str(item["name"])) for item in raw]

    def get_product(self, product_id: str) -> ProductInfo:
        if not self._markets_loaded:
            self._read("load_markets", self.exchange.load_markets)
            self._markets_loaded = True
        for market in self.exchange.markets.values():
            if market.get("id") != product_id:
                continue
            info = market.get("info") or {}
            return ProductInfo(
                product_id=product_id,
                base_currency=str(info.get("base_currency", market.get("base"))),
                quote_currency=str(info.get("quote_currency", market.get("quote"))),
                base_precision=precision_from_increment(info.get("base_increment", market["precision"]["amount"])),
                quote_precision=precision_from_increment(info.get("quote_increment", market["precision"]["price"])),
            )
        raise ConfigurationError(
            f"Could not find a product pair named {product_id!r}; check the base and quote currency names"
        )

    def transfer_funds(self, from_profile: str, to_profile: str, currency: str, amount: Decimal) -> Any:
        logger.info("TRANSFER %s %s from profile %s to %s", amount, currency, from_profile, to_profile)
        try:
            return self.exchange.private_post_profiles_transfer({
                "from": from_profile,
                "to": to_profile,
                "currency": currency,
                "amount": str(amount),
            })
        except ccxt.BaseError as exc:
            raise TransientExchangeError(f"Transfer of {amount} {currency} failed: {exc}") from exc
