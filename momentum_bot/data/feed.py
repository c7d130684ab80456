"""
Price feeds.

The engine consumes an iterator of `Tick` objects and does not care
where they come from.  `CoinbaseTickerFeed` subscribes to the exchange's
websocket ticker channel in a background thread and keeps only the
latest price; its `ticks()` generator samples that price at a fixed
interval.  `ReplayPriceFeed` serves a fixed series for backtests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional

import pandas as pd
import websockets

from ..execution.models import Tick
from ..utils.decimals import to_decimal

logger = logging.getLogger(__name__)

PRODUCTION_WS_URL = "wss://ws-feed.exchange.coinbase.com"
SANDBOX_WS_URL = "wss://ws-feed-public.sandbox.exchange.coinbase.com"


class LatestPrice:
    """Holds the most recent tick.

    One thread writes, any number read; the last write wins.  Replacing
    the reference is atomic, so no lock is involved.
    """

    def __init__(self) -> None:
        self._tick: Optional[Tick] = None

    def set(self, tick: Tick) -> None:
        self._tick = tick

    def get(self) -> Optional[Tick]:
        return self._tick


def parse_ticker_message(raw: str) -> Optional[Tick]:
    """Extract a tick from a websocket message, `None` for other message types."""
    data = json.loads(raw)
    if data.get("type") != "ticker" or "price" not in data:
        return None
    ts = pd.Timestamp(data["time"]) if data.get("time") else pd.Timestamp.now(tz="UTC")
    return Tick(price=to_decimal(data["price"]), ts=ts)


class CoinbaseTickerFeed:
    """Keep a `LatestPrice` current from the Coinbase websocket ticker channel.

    Parameters
    ----------
    product_id : str
        Product to subscribe to, e.g. ``"BTC-USD"``.
    url : str
        Websocket endpoint.
    tick_interval : float
        Seconds between two samples yielded by `ticks()`.
    reconnect_delay : float
        Seconds to wait before reconnecting after an error or a close.
    """

    def __init__(
        self,
        product_id: str,
        url: str = PRODUCTION_WS_URL,
        tick_interval: float = 0.25,
        reconnect_delay: float = 3.0,
    ) -> None:
        self.product_id = product_id
        self.url = url
        self.tick_interval = tick_interval
        self.reconnect_delay = reconnect_delay
        self.latest = LatestPrice()
        self._thread: Optional[threading.Thread] = None

    async def _ws_loop(self) -> None:
        subscribe = {
            "type": "subscribe",
            "product_ids": [self.product_id],
            "channels": ["ticker"],
        }
        while True:
            try:
                async with websockets.connect(self.url) as ws:
                    await ws.send(json.dumps(subscribe))
                    logger.info("Connected to ticker feed %s for %s", self.url, self.product_id)
                    async for msg in ws:
                        tick = parse_ticker_message(msg)
                        if tick is not None:
                            self.latest.set(tick)
                logger.debug("Ticker feed closed, reconnecting...")
            except Exception as exc:  # pragma: no cover - network errors reconnect
                logger.warning("Ticker feed error %s, reconnecting in %ss...", exc, self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    def start(self) -> None:
        """Run the websocket loop in a daemon thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=lambda: asyncio.run(self._ws_loop()),
            name=f"ticker-{self.product_id}",
            daemon=True,
        )
        self._thread.start()

    def wait_for_price(self, poll: float = 1.0) -> Tick:
        while True:
            tick = self.latest.get()
            if tick is not None:
                return tick
            time.sleep(poll)

    def ticks(self) -> Iterator[Tick]:
        """Yield the latest tick every `tick_interval` seconds, forever."""
        self.start()
        self.wait_for_price()
        while True:
            yield self.latest.get()
            time.sleep(self.tick_interval)


class ReplayPriceFeed:
    """Serve a fixed sequence of ticks, for backtests and tests."""

    def __init__(self, ticks: Iterable[Tick]) -> None:
        self._ticks: List[Tick] = list(ticks)

    @classmethod
    def from_prices(cls, prices: Iterable) -> "ReplayPriceFeed":
        return cls(Tick(price=Decimal(str(p))) for p in prices)

    def __len__(self) -> int:
        return len(self._ticks)

    def ticks(self) -> Iterator[Tick]:
        return iter(self._ticks)
