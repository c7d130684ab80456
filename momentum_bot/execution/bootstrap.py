"""
Startup sequencing.

Everything that must be known before the first tick is processed is
resolved here: the saved position, the product's precisions, the
account and profile ids, and the fee rate.  Anything missing raises
`ConfigurationError` before trading starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..config.schema import Config
from .client import ExchangeClient
from .errors import CheckpointError, ConfigurationError
from .models import AccountIds, Position, ProductInfo
from ..utils.persistence import CheckpointStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradingContext:
    """What the engine needs to know about the exchange before it starts."""
    product: ProductInfo
    accounts: AccountIds
    position: Position
    fee_rate: Decimal


def load_position(checkpoint: Optional[CheckpointStore]) -> Position:
    """Return the checkpointed position, or a flat one.

    A missing checkpoint means no position.  An unreadable one is logged
    and also treated as no position, so a corrupt file never blocks
    startup.
    """
    if checkpoint is None:
        return Position.flat()
    try:
        position = checkpoint.load()
    except CheckpointError as exc:
        logger.error("Failed to read the checkpoint, starting with no position: %s", exc)
        return Position.flat()
    if position is None:
        logger.info("No checkpoint found at %s, starting with no existing position", checkpoint.path)
        return Position.flat()
    logger.info("Found checkpoint, starting with position data: %s", position.to_dict())
    return position


def resolve_accounts(client: ExchangeClient, product: ProductInfo, config: Config) -> AccountIds:
    """Find the base/quote account ids and the trading/deposit profile ids."""
    base_id = quote_id = None
    for account in client.get_accounts():
        if account.currency == product.base_currency:
            base_id = account.id
        elif account.currency == product.quote_currency:
            quote_id = account.id
    if base_id is None or quote_id is None:
        missing = product.base_currency if base_id is None else product.quote_currency
        raise ConfigurationError(f"No {missing} account found for product {product.product_id}")

    profiles = {profile.name: profile.id for profile in client.get_profiles()}
    trading_profile_id = profiles.get(config.deposit.trading_profile)
    if trading_profile_id is None:
        raise ConfigurationError(
            f"Could not find the trading profile {config.deposit.trading_profile!r}; check its spelling"
        )
    deposit_profile_id = profiles.get(config.deposit.deposit_profile)
    if config.deposit.enabled and deposit_profile_id is None:
        raise ConfigurationError(
            f"Could not find the deposit profile {config.deposit.deposit_profile!r}; check its spelling"
        )
    return AccountIds(
        base_account_id=base_id,
        quote_account_id=quote_id,
        trading_profile_id=trading_profile_id,
        deposit_profile_id=deposit_profile_id,
    )


def bootstrap(config: Config, client: ExchangeClient, checkpoint: Optional[CheckpointStore]) -> TradingContext:
    """Resolve the trading context in startup order.

    Raises
    ------
    ConfigurationError
        Unknown product pair, or a currency account or profile that cannot
        be found.
    TransientExchangeError
        The exchange could not be reached to read the above.
    """
    position = load_position(checkpoint)

    product = client.get_product(config.exchange.product_id)
    logger.info("Product info: %s", product)

    accounts = resolve_accounts(client, product, config)
    logger.info("Account ids: %s", accounts)

    if config.trading.fee_rate is not None:
        fee_rate = config.trading.fee_rate
    else:
        fee_rate = client.get_fees().highest
    logger.info("Fee rate: %s", fee_rate)

    return TradingContext(product=product, accounts=accounts, position=position, fee_rate=fee_rate)
