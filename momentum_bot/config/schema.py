"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields.

Trading thresholds are kept as ``Decimal`` so that threshold checks
such as ``peak >= valley * (1 + buy_delta)`` are exact.  API
credentials may be left out of the file and supplied through the
``COINBASE_API_KEY``, ``COINBASE_API_SECRET`` and
``COINBASE_API_PASSPHRASE`` environment variables instead.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
import yaml

from ..execution.errors import ConfigurationError


SUPPORTED_EXCHANGES = ("coinbaseexchange",)


@dataclass(frozen=True)
class TradingConfig:
    """Swing thresholds and order pricing.

    Attributes
    ----------
    buy_delta : Decimal
        Rise from the last valley to the current peak that triggers a buy
        (e.g. 0.015 for 1.5 %).
    sell_delta : Decimal
        Fall from the last peak to the current valley that triggers a sell.
    order_price_delta : Decimal
        Extra room given to limit prices so orders go through: buys are
        placed above the peak, sells below the valley.
    min_profit_delta : Decimal
        Minimum profit, as a fraction of the acquisition cost, a sale must
        be projected to make on top of both fee legs.
    fee_rate : Decimal or None
        Fixed fee rate.  When ``None`` the higher of the exchange's maker
        and taker fee is fetched at the start of every cycle.
    balance_minimum : Decimal
        Quote currency amount left untouched when buying, so rounding
        never leaves the order short of funds.
    time_in_force : str
        Time in force for limit orders (``GTC``, ``GTT``, ``IOC``, ``FOK``).
    """

    buy_delta: Decimal = Decimal("0.015")
    sell_delta: Decimal = Decimal("0.02")
    order_price_delta: Decimal = Decimal("0.001")
    min_profit_delta: Decimal = Decimal("0")
    fee_rate: Optional[Decimal] = None
    balance_minimum: Decimal = Decimal("0.06")
    time_in_force: str = "GTC"


@dataclass(frozen=True)
class DepositConfig:
    """Routing of realized profit to a second profile.

    Attributes
    ----------
    enabled : bool
        Whether a cut of each profitable sale is transferred.
    share_fraction : Decimal
        Fraction of the realized profit to transfer, between 0 and 1.
    trading_profile : str
        Name of the profile (portfolio) the bot trades in.
    deposit_profile : str
        Name of the profile receiving the profit share.
    """

    enabled: bool = False
    share_fraction: Decimal = Decimal("0.5")
    trading_profile: str = "default"
    deposit_profile: str = "deposit"


@dataclass
class ExchangeConfig:
    """Exchange connection settings.

    Attributes
    ----------
    name : str
        ccxt exchange id.  Only ``coinbaseexchange`` is supported.
    sandbox : bool
        Use the exchange's public sandbox instead of production.
    base_currency, quote_currency : str
        The two halves of the product pair (``BTC`` and ``USD`` trade the
        ``BTC-USD`` product).
    api_key, api_secret, api_passphrase : str
        Credentials.  Empty values are read from the environment.
    websocket_url : str
        Override for the ticker feed URL; empty selects the production or
        sandbox feed according to ``sandbox``.
    """

    name: str = "coinbaseexchange"
    sandbox: bool = True
    base_currency: str = "BTC"
    quote_currency: str = "USD"
    api_key: str = ""
    api_secret: str = ""
    api_passphrase: str = ""
    websocket_url: str = ""

    @property
    def product_id(self) -> str:
        return f"{self.base_currency}-{self.quote_currency}"


@dataclass
class EngineConfig:
    """Timing of the trading loop and of the order supervisor.

    Attributes
    ----------
    tick_interval : float
        Seconds between two reads of the latest price.
    poll_interval : float
        Seconds between two order status checks.
    max_polls : int
        Status checks made before an unfilled order is cancelled.
    state_file : str
        Path of the position checkpoint.
    """

    tick_interval: float = 0.25
    poll_interval: float = 6.0
    max_polls: int = 100
    state_file: str = "positionData.json"


@dataclass
class BacktestConfig:
    """Historical replay settings.

    Attributes
    ----------
    csv_path : str
        CSV file holding the price series.
    price_column : str
        Column used as the price of each row.
    starting_balance : Decimal
        Quote currency the simulated account starts with.
    fee_rate : Decimal
        Fee rate charged by the simulated exchange on every fill.
    base_increment, quote_increment : str
        Size and price increments of the simulated product.
    """

    csv_path: str = "data/prices.csv"
    price_column: str = "high"
    starting_balance: Decimal = Decimal("500")
    fee_rate: Decimal = Decimal("0.005")
    base_increment: str = "0.00000001"
    quote_increment: str = "0.01"


@dataclass
class Config:
    """Root configuration for the trading program.

    Attributes
    ----------
    trading : TradingConfig
        Trigger thresholds and order pricing.
    deposit : DepositConfig
        Profit routing.
    exchange : ExchangeConfig
        Exchange connection and product pair.
    engine : EngineConfig
        Loop and order supervisor timing.
    backtest : BacktestConfig
        Replay settings used by ``backtest`` mode.
    mode : str
        Operating mode: ``live`` or ``backtest``.
    """

    trading: TradingConfig = field(default_factory=TradingConfig)
    deposit: DepositConfig = field(default_factory=DepositConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    mode: str = "live"


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _fraction(value: Any, name: str, allow_zero: bool = False) -> Decimal:
    """Parse a fraction, requiring 0 < value < 1 (or 0 <= value when allowed)."""
    number = _decimal(value, name)
    lower_ok = number >= 0 if allow_zero else number > 0
    if not lower_ok or number >= 1:
        raise ConfigurationError(f"{name} must be a fraction below 1, got {number}")
    return number


def validate_config(cfg: Config) -> None:
    """Raise `ConfigurationError` for settings the engine cannot run with."""
    if cfg.exchange.name not in SUPPORTED_EXCHANGES:
        raise ConfigurationError(f"Unsupported exchange: {cfg.exchange.name}")
    if not 0 <= cfg.deposit.share_fraction <= 1:
        raise ConfigurationError(
            f"deposit.share_fraction must be between 0 and 1, got {cfg.deposit.share_fraction}"
        )
    if cfg.engine.max_polls < 1:
        raise ConfigurationError("engine.max_polls must be at least 1")
    if cfg.mode not in ('live', 'backtest'):
        raise ConfigurationError(f"Unknown mode: {cfg.mode}")


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        sensible defaults defined in the dataclasses.

    Raises
    ------
    ConfigurationError
        If a value is out of range or of the wrong type.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}

    # Build nested dictionaries representing the default dataclasses
    defaults: Dict[str, Any] = {
        'trading': {
            'buy_delta': "0.015",
            'sell_delta': "0.02",
            'order_price_delta': "0.001",
            'min_profit_delta': "0",
            'fee_rate': None,
            'balance_minimum': "0.06",
            'time_in_force': "GTC",
        },
        'deposit': {
            'enabled': False,
            'share_fraction': "0.5",
            'trading_profile': "default",
            'deposit_profile': "deposit",
        },
        'exchange': {
            'name': "coinbaseexchange",
            'sandbox': True,
            'base_currency': "BTC",
            'quote_currency': "USD",
            'api_key': "",
            'api_secret': "",
            'api_passphrase': "",
            'websocket_url': "",
        },
        'engine': {
            'tick_interval': 0.25,
            'poll_interval': 6.0,
            'max_polls': 100,
            'state_file': "positionData.json",
        },
        'backtest': {
            'csv_path': "data/prices.csv",
            'price_column': "high",
            'starting_balance': "500",
            'fee_rate': "0.005",
            'base_increment': "0.00000001",
            'quote_increment': "0.01",
        },
        'mode': 'live',
    }

    merged = _merge_dict(defaults, raw)

    trading = merged['trading']
    trading_cfg = TradingConfig(
        buy_delta=_fraction(trading['buy_delta'], 'trading.buy_delta'),
        sell_delta=_fraction(trading['sell_delta'], 'trading.sell_delta'),
        order_price_delta=_fraction(trading['order_price_delta'], 'trading.order_price_delta', allow_zero=True),
        min_profit_delta=_fraction(trading['min_profit_delta'], 'trading.min_profit_delta', allow_zero=True),
        fee_rate=(
            None if trading['fee_rate'] is None
            else _fraction(trading['fee_rate'], 'trading.fee_rate', allow_zero=True)
        ),
        balance_minimum=_decimal(trading['balance_minimum'], 'trading.balance_minimum'),
        time_in_force=str(trading['time_in_force']).upper(),
    )

    deposit = merged['deposit']
    deposit_cfg = DepositConfig(
        enabled=bool(deposit['enabled']),
        share_fraction=_decimal(deposit['share_fraction'], 'deposit.share_fraction'),
        trading_profile=str(deposit['trading_profile']),
        deposit_profile=str(deposit['deposit_profile']),
    )

    exchange = merged['exchange']
    exchange_cfg = ExchangeConfig(
        name=str(exchange['name']).lower(),
        sandbox=bool(exchange['sandbox']),
        base_currency=str(exchange['base_currency']).upper(),
        quote_currency=str(exchange['quote_currency']).upper(),
        api_key=exchange['api_key'] or os.environ.get("COINBASE_API_KEY", ""),
        api_secret=exchange['api_secret'] or os.environ.get("COINBASE_API_SECRET", ""),
        api_passphrase=exchange['api_passphrase'] or os.environ.get("COINBASE_API_PASSPHRASE", ""),
        websocket_url=str(exchange['websocket_url'] or ""),
    )

    engine_cfg = EngineConfig(**merged['engine'])

    backtest = merged['backtest']
    backtest_cfg = BacktestConfig(
        csv_path=str(backtest['csv_path']),
        price_column=str(backtest['price_column']),
        starting_balance=_decimal(backtest['starting_balance'], 'backtest.starting_balance'),
        fee_rate=_fraction(backtest['fee_rate'], 'backtest.fee_rate', allow_zero=True),
        base_increment=str(backtest['base_increment']),
        quote_increment=str(backtest['quote_increment']),
    )

    cfg = Config(
        trading=trading_cfg,
        deposit=deposit_cfg,
        exchange=exchange_cfg,
        engine=engine_cfg,
        backtest=backtest_cfg,
        mode=str(merged.get('mode', 'live')).lower(),
    )
    validate_config(cfg)
    return cfg
