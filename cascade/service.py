"""
Cascade Detector Service
========================
Runs the detectors for every monitored symbol:

  liquidations   consumes the feed's forced-liquidation stream and adds
                 each event to its symbol's TickBuilder, reconnecting
                 with capped exponential back-off when the stream drops
  sampler loop   every ``tick_interval_seconds`` fetches price + open
                 interest for all symbols concurrently, closes each
                 symbol's TickBuilder period and queues the resulting Tick
  symbol workers one asyncio task per symbol draining its own queue, so
                 ticks for a symbol are applied strictly in order while
                 symbols proceed independently

After each tick the worker logs a CSV status line, broadcasts the status
on the configured channel and, when the light changed, hands the
transition to the alerter.

Usage::

    service = CascadeDetectorService(settings, emitter=emitter)
    await service.start()
    service.on_liquidation("BTCUSDT", "long", 250_000.0)
    ...
    await service.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cascade.alerts import CascadeAlerter
from cascade.config import merge_settings
from cascade.detector import CascadeStatus
from cascade.logging_setup import SIGNAL_LEVEL
from cascade.market_feed import MarketDataFeed
from cascade.registry import AggregateStatus, DetectorRegistry
from cascade.ticks import Tick, TickBuilder

logger = logging.getLogger(__name__)

LIQUIDATION_MAX_BACKOFF_SECONDS = 30


class CascadeDetectorService:
    """Owns the registry, per-symbol queues/workers and the sampler loop.

    Parameters
    ----------
    config : dict, optional
        The ``cascade_detector`` config section; merged over defaults.
    registry, feed, alerter : optional
        Injected collaborators; built from *config* when omitted.
    emitter : optional
        Anything with ``async emit(channel, payload)``; typically the
        dashboard's ``DashboardEventEmitter``.  No broadcast when ``None``.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        registry: Optional[DetectorRegistry] = None,
        feed: Optional[MarketDataFeed] = None,
        emitter: Optional[Any] = None,
        alerter: Optional[CascadeAlerter] = None,
    ) -> None:
        self._settings = merge_settings(config)
        self._registry = registry or DetectorRegistry(
            auto_enabled=bool(self._settings["auto_enabled"])
        )
        self._feed = feed or MarketDataFeed(self._settings["market_data"])
        self._alerter = alerter or CascadeAlerter(self._settings["alerts"])
        self._emitter = emitter

        self._interval: float = float(self._settings["tick_interval_seconds"])
        self._queue_maxsize: int = int(self._settings["queue_maxsize"])
        self._channel: str = str(self._settings["broadcast_channel"])

        self._builders: Dict[str, TickBuilder] = {}
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._sampler_task: Optional[asyncio.Task] = None
        self._liquidation_task: Optional[asyncio.Task] = None
        self._running = False

        self.sync_symbols(self._settings["symbols"])

        logger.info(
            "CascadeDetectorService initialised  symbols=%s  interval=%.1fs  auto_enabled=%s",
            self._registry.symbols(),
            self._interval,
            self._registry.get_auto_enabled(),
        )

    # ----- properties -------------------------------------------------------

    @property
    def registry(self) -> DetectorRegistry:
        return self._registry

    @property
    def running(self) -> bool:
        return self._running

    # ----- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("CascadeDetectorService already running")
            return

        await self._feed.start()
        self._running = True
        for symbol in self._registry.symbols():
            self._start_worker(symbol)
        self._sampler_task = asyncio.create_task(
            self._sampler_loop(), name="cascade-sampler"
        )
        self._liquidation_task = asyncio.create_task(
            self._liquidation_loop(), name="cascade-liquidations"
        )
        logger.info("Cascade Detector Service started")

    async def stop(self) -> None:
        self._running = False
        tasks: List[asyncio.Task] = list(self._workers.values())
        for task in (self._sampler_task, self._liquidation_task):
            if task is not None:
                tasks.append(task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()
        self._sampler_task = None
        self._liquidation_task = None
        await self._feed.close()
        logger.info("Cascade Detector Service stopped")

    # ----- symbol management ----------------------------------------------

    def sync_symbols(self, symbols: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Align monitored symbols with *symbols*, starting/stopping workers."""
        added, removed = self._registry.sync_symbols(symbols)
        for symbol in removed:
            worker = self._workers.pop(symbol, None)
            if worker is not None:
                worker.cancel()
            self._queues.pop(symbol, None)
            self._builders.pop(symbol, None)
        for symbol in self._registry.symbols():
            self._builders.setdefault(symbol, TickBuilder(symbol))
            self._queues.setdefault(symbol, asyncio.Queue(maxsize=self._queue_maxsize))
            if self._running:
                self._start_worker(symbol)
        return added, removed

    def _start_worker(self, symbol: str) -> None:
        if symbol in self._workers:
            return
        queue = self._queues[symbol]
        self._workers[symbol] = asyncio.create_task(
            self._worker(symbol, queue), name=f"cascade-worker-{symbol}"
        )

    # ----- inputs ---------------------------------------------------------

    def on_liquidation(self, symbol: str, side: str, notional: float) -> None:
        """Record a liquidation event from the liquidation stream."""
        builder = self._builders.get(symbol)
        if builder is None:
            return
        builder.record_liquidation(side, notional)

    def submit_tick(self, symbol: str, tick: Tick) -> bool:
        """Queue *tick* for *symbol*; returns False when it could not be queued."""
        queue = self._queues.get(symbol)
        if queue is None:
            logger.debug("Tick for unmonitored symbol %s ignored", symbol)
            return False
        try:
            queue.put_nowait(tick)
        except asyncio.QueueFull:
            logger.warning("Tick queue full for %s -- tick dropped", symbol)
            return False
        return True

    async def sample_once(self) -> int:
        """Build and queue one tick per monitored symbol; returns ticks queued."""
        symbols = [s for s in self._registry.symbols() if s in self._builders]
        requests = []
        for symbol in symbols:
            requests.append(self._feed.fetch_price(symbol))
            requests.append(self._feed.fetch_open_interest(symbol))
        readings = await asyncio.gather(*requests)

        queued = 0
        for i, symbol in enumerate(symbols):
            # Symbols removed while the requests were in flight have no builder.
            builder = self._builders.get(symbol)
            if builder is None:
                continue
            price, oi = readings[2 * i], readings[2 * i + 1]
            if self.submit_tick(symbol, builder.build(price, oi)):
                queued += 1
        return queued

    # ----- pass-through control / queries ---------------------------------

    def set_auto_enabled(self, enabled: bool, symbol: Optional[str] = None) -> List[str]:
        return self._registry.set_auto_enabled(enabled, symbol)

    def get_auto_enabled(self, symbol: Optional[str] = None) -> bool:
        return self._registry.get_auto_enabled(symbol)

    def get_current_status(self, symbol: str) -> Optional[CascadeStatus]:
        return self._registry.get_status(symbol)

    def get_aggregate_status(self) -> AggregateStatus:
        return self._registry.get_aggregate_status()

    def is_blocking(self) -> bool:
        return self._registry.get_aggregate_status().block_all

    # ----- loops ----------------------------------------------------------

    async def _sampler_loop(self) -> None:
        while self._running:
            started = time.monotonic()
            try:
                await self.sample_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Cascade sampler cycle failed")
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self._interval - elapsed))

    async def _liquidation_loop(self) -> None:
        """Feed forced liquidations into the builders; reconnect on drop."""
        attempts = 0
        while self._running:
            try:
                async for symbol, side, notional in self._feed.stream_liquidations():
                    attempts = 0
                    self.on_liquidation(symbol, side, notional)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Liquidation stream failed: %s", exc)
            attempts += 1
            backoff = min(2 ** attempts, LIQUIDATION_MAX_BACKOFF_SECONDS)
            logger.warning(
                "Liquidation stream disconnected -- reconnecting in %ds (attempt %d)",
                backoff, attempts,
            )
            await asyncio.sleep(backoff)

    async def _worker(self, symbol: str, queue: asyncio.Queue) -> None:
        while True:
            tick = await queue.get()
            try:
                await self.process_tick(symbol, tick)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Cascade tick failed for %s", symbol)
            finally:
                queue.task_done()

    async def process_tick(self, symbol: str, tick: Tick) -> Optional[CascadeStatus]:
        """Ingest *tick*, then log, broadcast and alert on the result."""
        previous = self._registry.get_status(symbol)
        if previous is None:
            return None
        status = self._registry.ingest_tick(symbol, tick)

        logger.debug(
            "Cascade: %s,%s,%s",
            datetime.now(timezone.utc).isoformat(), symbol, status.csv_line(),
        )

        if self._emitter is not None:
            await self._emitter.emit(self._channel, {"symbol": symbol, **status.to_dict()})

        if status.light != previous.light:
            logger.log(
                SIGNAL_LEVEL,
                "Cascade light %s: %s -> %s (score %d)",
                symbol, previous.light.value, status.light.value, status.score,
                extra={"symbol": symbol, "status": status.to_dict()},
            )
            await self._alerter.notify_level_change(symbol, previous.light, status)

        return status
