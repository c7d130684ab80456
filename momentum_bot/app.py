"""
Application entry point.

This module defines a simple command‑line interface for running the
momentum bot in its two modes.  ``live`` trades on Coinbase Exchange
(sandbox or production, according to the configuration) from the
websocket ticker feed; ``backtest`` replays a CSV price series against a
simulated exchange and writes a report.

Fatal errors stop the program with exit status 1 after a JSON error
record has been written next to the position checkpoint.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .config.schema import Config, load_config
from .data.feed import PRODUCTION_WS_URL, SANDBOX_WS_URL, CoinbaseTickerFeed
from .execution.backtest_exec import BacktestEngine
from .execution.bootstrap import bootstrap
from .execution.client import CoinbaseExchangeClient
from .execution.engine import MomentumEngine
from .execution.errors import FatalTradingError, TradingError
from .reporting.report import generate_backtest_report
from .utils.persistence import CheckpointStore, save_state

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def write_error_record(config: Config, exc: BaseException, engine: Optional[MomentumEngine] = None) -> str:
    """Persist a structured description of a fatal error and return its path."""
    path = str(Path(config.engine.state_file).with_name("error_record.json"))
    record = {
        'time': datetime.now(timezone.utc).isoformat(),
        'error': type(exc).__name__,
        'message': str(exc),
        'mode': config.mode,
        'product': config.exchange.product_id,
    }
    if engine is not None:
        record['state'] = engine.state.value
        record['position'] = engine.position.to_dict()
    save_state(path, record)
    return path


def run_live(config: Config) -> None:
    """Bootstrap against the exchange and trade from the ticker feed until stopped."""
    checkpoint = CheckpointStore(config.engine.state_file)
    engine: Optional[MomentumEngine] = None
    try:
        client = CoinbaseExchangeClient(config.exchange, time_in_force=config.trading.time_in_force)
        context = bootstrap(config, client, checkpoint)
        engine = MomentumEngine(config, client, context, checkpoint=checkpoint)
        url = config.exchange.websocket_url or (SANDBOX_WS_URL if config.exchange.sandbox else PRODUCTION_WS_URL)
        feed = CoinbaseTickerFeed(context.product.product_id, url=url, tick_interval=config.engine.tick_interval)
        feed.start()
        first = feed.wait_for_price()
        logger.info("Starting price of %s in %s is %s", context.product.base_currency,
                    context.product.quote_currency, first.price)
        engine.run(feed.ticks())
    except TradingError as exc:
        # anything reaching this point ends the run, startup read failures included
        path = write_error_record(config, exc, engine)
        logger.critical("Fatal error, shutting down (record written to %s): %s", path, exc)
        sys.exit(1)


def run_backtest(config: Config, out_dir: str) -> None:
    logger.info("Running backtest on %s...", config.backtest.csv_path)
    try:
        result = BacktestEngine(config).run()
    except TradingError as exc:
        logger.critical("Backtest stopped by a fatal error: %s", exc)
        sys.exit(1)
    summary = generate_backtest_report(result, out_dir=out_dir)
    logger.info("Backtest complete: %d buys, %d sells, profit %s. Results saved to the '%s' directory.",
                summary['number_of_buys'], summary['number_of_sells'], summary['profit_generated'], out_dir)


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command‑line arguments and dispatch to the appropriate mode."""
    parser = argparse.ArgumentParser(description="Momentum trading bot")
    parser.add_argument('mode', choices=['live', 'backtest'], help="Operating mode")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('--results', default='results', help="Output directory for backtest reports")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except FatalTradingError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    # Override mode from CLI
    config.mode = args.mode

    logger.info("Configuration: trading=%s deposit=%s product=%s sandbox=%s",
                config.trading, config.deposit, config.exchange.product_id, config.exchange.sandbox)

    if args.mode == 'backtest':
        run_backtest(config, args.results)
    else:
        try:
            run_live(config)
        except KeyboardInterrupt:
            logger.info("Shutting down momentum bot...")


if __name__ == '__main__':
    main()
