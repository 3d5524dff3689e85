"""
Market data feed
================
Polls last price and open interest for perpetual futures symbols from a
Binance-compatible public REST API, and streams forced liquidations from
the all-market ``!forceOrder@arr`` websocket.  Everything is unauthenticated.

Every REST fetch returns ``None`` on failure so the sampler can fall back
to the last known reading.  The liquidation stream ends or raises when the
connection drops; reconnecting is the caller's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import aiohttp
import websockets

from cascade.ticks import LONG, SHORT

logger = logging.getLogger(__name__)

_ENDPOINT_TICKER_PRICE = "/fapi/v1/ticker/price"
_ENDPOINT_OPEN_INTEREST = "/fapi/v1/openInterest"
_STREAM_FORCE_ORDERS = "/ws/!forceOrder@arr"

WS_PING_INTERVAL_SECONDS = 20
WS_PING_TIMEOUT_SECONDS = 60

_DEFAULT_CONFIG: Dict[str, Any] = {
    "base_url": "https://fapi.binance.com",
    "ws_url": "wss://fstream.binance.com",
    "request_timeout_seconds": 10,
}


class MarketDataFeed:
    """aiohttp client for price / open-interest snapshots, plus the liquidation stream.

    Usage::

        feed = MarketDataFeed({"base_url": "https://fapi.binance.com"})
        await feed.start()
        price = await feed.fetch_price("BTCUSDT")
        oi = await feed.fetch_open_interest("BTCUSDT")
        async for symbol, side, notional in feed.stream_liquidations():
            ...
        await feed.close()
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        merged = {**_DEFAULT_CONFIG, **(config or {})}
        self._base_url: str = str(merged["base_url"]).rstrip("/")
        self._ws_url: str = str(merged["ws_url"]).rstrip("/")
        self._timeout: float = float(merged["request_timeout_seconds"])
        self._session: Optional[aiohttp.ClientSession] = None
        self._backoff_until: float = 0.0

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def backing_off(self) -> bool:
        return time.monotonic() < self._backoff_until

    async def fetch_price(self, symbol: str) -> Optional[float]:
        data = await self._api_get(_ENDPOINT_TICKER_PRICE, {"symbol": symbol})
        return _float_field(data, "price")

    async def fetch_open_interest(self, symbol: str) -> Optional[float]:
        data = await self._api_get(_ENDPOINT_OPEN_INTEREST, {"symbol": symbol})
        return _float_field(data, "openInterest")

    async def stream_liquidations(self) -> AsyncIterator[Tuple[str, str, float]]:
        """Yield ``(symbol, side, notional)`` for every forced liquidation.

        *side* is the side of the liquidated position: a forced SELL closes
        a long, a forced BUY closes a short.  The generator returns when the
        server closes the socket cleanly; connection failures propagate.
        """
        url = f"{self._ws_url}{_STREAM_FORCE_ORDERS}"
        async with websockets.connect(
            url,
            ping_interval=WS_PING_INTERVAL_SECONDS,
            ping_timeout=WS_PING_TIMEOUT_SECONDS,
            close_timeout=5,
        ) as ws:
            logger.info("Liquidation stream connected: %s", url)
            async for raw in ws:
                try:
                    payload = json.loads(raw)
                except ValueError:
                    logger.debug("Liquidation stream: unparseable frame %r", raw[:200])
                    continue
                event = parse_force_order(payload)
                if event is not None:
                    yield event

    async def _api_get(self, path: str, params: Dict[str, Any]) -> Optional[Any]:
        """GET *path* and return parsed JSON, honouring 429 / 418 back-off."""
        if self._session is None or self._session.closed:
            return None
        if self.backing_off:
            return None

        url = f"{self._base_url}{path}"
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status == 429:
                    retry_after = int(resp.headers.get("Retry-After", "60"))
                    self._backoff_until = time.monotonic() + retry_after
                    logger.warning(
                        "429 rate-limit on %s -- backing off %ds", path, retry_after
                    )
                    return None
                if resp.status == 418:
                    self._backoff_until = time.monotonic() + 300
                    logger.error("418 IP-ban on %s -- backing off 300s", path)
                    return None
                if resp.status != 200:
                    text = await resp.text()
                    logger.warning("%s returned %d: %s", path, resp.status, text[:200])
                    return None
                return await resp.json()
        except asyncio.TimeoutError:
            logger.warning("Timeout fetching %s", path)
            return None
        except aiohttp.ClientError as exc:
            logger.warning("HTTP error fetching %s: %s", path, exc)
            return None


def parse_force_order(payload: Any) -> Optional[Tuple[str, str, float]]:
    """Turn a ``forceOrder`` event into ``(symbol, side, notional)``.

    Accepts the raw event or the combined-stream ``{"stream", "data"}``
    wrapper.  Notional is average fill price times filled quantity, falling
    back to order price and original quantity.  Returns ``None`` for
    anything that is not a usable liquidation.
    """
    if not isinstance(payload, dict):
        return None
    event = payload.get("data", payload)
    if not isinstance(event, dict) or event.get("e") != "forceOrder":
        return None
    order = event.get("o")
    if not isinstance(order, dict):
        return None

    symbol = str(order.get("s", "")).upper()
    order_side = str(order.get("S", "")).upper()
    if order_side == "SELL":
        side = LONG
    elif order_side == "BUY":
        side = SHORT
    else:
        return None

    price = _float_field(order, "ap") or _float_field(order, "p")
    qty = _float_field(order, "z") or _float_field(order, "q")
    if not symbol or not price or not qty:
        return None
    return symbol, side, price * qty


def _float_field(data: Any, key: str) -> Optional[float]:
    if not isinstance(data, dict):
        return None
    try:
        return float(data[key])
    except (KeyError, ValueError, TypeError):
        return None
