"""
Tests for cascade/service.py -- CascadeDetectorService
======================================================
Feed, emitter and alerter are mocked; the registry is real with an
injected clock.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from cascade.alerts import CascadeAlerter
from cascade.hysteresis import AlertLevel
from cascade.market_feed import MarketDataFeed
from cascade.registry import DetectorRegistry
from cascade.service import CascadeDetectorService
from cascade.ticks import Tick

CONFIG = {
    "symbols": ["BTCUSDT", "ETHUSDT"],
    "tick_interval_seconds": 3600,
    "queue_maxsize": 100,
}


@pytest.fixture
def feed():
    mock = AsyncMock(spec=MarketDataFeed)
    mock.fetch_price.return_value = 100.0
    mock.fetch_open_interest.return_value = 5000.0
    mock.stream_liquidations = _liquidation_stream()
    return mock


@pytest.fixture
def emitter():
    return AsyncMock()


@pytest.fixture
def alerter():
    return AsyncMock(spec=CascadeAlerter)


@pytest.fixture
def service(clock, feed, emitter, alerter):
    return CascadeDetectorService(
        CONFIG,
        registry=DetectorRegistry(clock=clock),
        feed=feed,
        emitter=emitter,
        alerter=alerter,
    )


def _liquidation_stream(*events):
    """Stand-in for ``MarketDataFeed.stream_liquidations``: yields *events*, then idles."""
    async def stream():
        for event in events:
            yield event
        await asyncio.Event().wait()
    return MagicMock(side_effect=stream)


def _cascade_ticks():
    ticks = [
        Tick(0.0 if i < 20 else 1.0, 0.001 if i % 2 == 0 else -0.001, 100.0, False)
        for i in range(39)
    ]
    ticks.append(Tick(1000.0, -0.001, 90.0, True))
    return ticks


class TestSetup:
    def test_configured_symbols_monitored(self, service):
        assert sorted(service.registry.symbols()) == ["BTCUSDT", "ETHUSDT"]
        assert service.running is False

    def test_default_collaborators(self):
        svc = CascadeDetectorService({"symbols": ["BTCUSDT"], "alerts": {"enabled": False}})
        assert svc.registry.symbols() == ["BTCUSDT"]
        assert svc.get_auto_enabled() is True

    def test_auto_enabled_from_config(self, feed, alerter):
        svc = CascadeDetectorService(
            {"symbols": ["BTCUSDT"], "auto_enabled": False}, feed=feed, alerter=alerter
        )
        assert svc.get_auto_enabled() is False
        assert svc.get_current_status("BTCUSDT").auto_enabled is False


class TestProcessTick:
    @pytest.mark.asyncio
    async def test_broadcasts_status(self, service, emitter):
        status = await service.process_tick("BTCUSDT", Tick(10.0, 0.001, 5000.0, False))
        emitter.emit.assert_awaited_once()
        channel, payload = emitter.emit.call_args[0]
        assert channel == "cascade_status"
        assert payload["symbol"] == "BTCUSDT"
        assert payload["score"] == status.score
        assert payload["light"] == "green"

    @pytest.mark.asyncio
    async def test_no_alert_without_light_change(self, service, alerter):
        await service.process_tick("BTCUSDT", Tick(10.0, 0.001, 5000.0, False))
        alerter.notify_level_change.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_alert_on_light_change(self, service, alerter, clock):
        for tick in _cascade_ticks():
            clock.advance()
            status = await service.process_tick("BTCUSDT", tick)
        assert status.light == AlertLevel.RED
        alerter.notify_level_change.assert_awaited_once()
        symbol, previous, current = alerter.notify_level_change.call_args[0]
        assert symbol == "BTCUSDT"
        assert previous == AlertLevel.GREEN
        assert current is status
        assert service.is_blocking() is True

    @pytest.mark.asyncio
    async def test_unmonitored_symbol(self, service, emitter):
        assert await service.process_tick("DOGEUSDT", Tick(0.0, 0.0, 1.0, False)) is None
        emitter.emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_emitter(self, clock, feed, alerter):
        svc = CascadeDetectorService(
            CONFIG, registry=DetectorRegistry(clock=clock), feed=feed, alerter=alerter
        )
        status = await svc.process_tick("BTCUSDT", Tick(1.0, 0.0, 1.0, False))
        assert status is not None


class TestQueues:
    def test_submit_unknown_symbol(self, service):
        assert service.submit_tick("DOGEUSDT", Tick(0.0, 0.0, 1.0, False)) is False

    def test_full_queue_drops(self, clock, feed, alerter, caplog):
        svc = CascadeDetectorService(
            {"symbols": ["BTCUSDT"], "queue_maxsize": 1},
            registry=DetectorRegistry(clock=clock), feed=feed, alerter=alerter,
        )
        tick = Tick(0.0, 0.0, 1.0, False)
        assert svc.submit_tick("BTCUSDT", tick) is True
        assert svc.submit_tick("BTCUSDT", tick) is False
        assert "queue full" in caplog.text

    @pytest.mark.asyncio
    async def test_sample_once(self, service, feed):
        assert await service.sample_once() == 2
        assert feed.fetch_price.await_count == 2
        assert feed.fetch_open_interest.await_count == 2
        tick = service._queues["BTCUSDT"].get_nowait()
        assert tick == Tick(0.0, 0.0, 5000.0, False)

    @pytest.mark.asyncio
    async def test_liquidations_reach_the_tick(self, service, feed):
        await service.sample_once()
        service._queues["BTCUSDT"].get_nowait()

        service.on_liquidation("BTCUSDT", "long", 50_000.0)
        service.on_liquidation("DOGEUSDT", "long", 1.0)  # ignored
        feed.fetch_price.return_value = 99.0
        await service.sample_once()
        tick = service._queues["BTCUSDT"].get_nowait()
        assert tick.liq_notional_same_side == 50_000.0
        assert tick.ret_side_matches_liq is True

    @pytest.mark.asyncio
    async def test_sample_once_fetches_all_symbols_concurrently(self, service, feed):
        in_flight = 0
        peak = 0

        async def slow(symbol):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return 100.0

        feed.fetch_price.side_effect = slow
        feed.fetch_open_interest.side_effect = slow
        assert await service.sample_once() == 2
        # Two symbols, price + open interest each, all in flight together.
        assert peak == 4

    @pytest.mark.asyncio
    async def test_symbol_removed_mid_sample_is_skipped(self, service, feed):
        async def price(symbol):
            service.sync_symbols(["ETHUSDT"])
            return 100.0

        feed.fetch_price.side_effect = price
        assert await service.sample_once() == 1
        assert "BTCUSDT" not in service._queues


async def _until(predicate, timeout=2):
    async def wait():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(wait(), timeout=timeout)


async def _cancel(service, task):
    service._running = False
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class TestLiquidationStream:
    @pytest.mark.asyncio
    async def test_stream_events_reach_the_detector(self, service, feed):
        feed.stream_liquidations = _liquidation_stream(
            ("BTCUSDT", "long", 1_000_000.0),
            ("DOGEUSDT", "short", 5.0),
        )
        service._running = True
        task = asyncio.create_task(service._liquidation_loop())
        try:
            await _until(lambda: service._builders["BTCUSDT"].dominant_side is not None)
        finally:
            await _cancel(service, task)

        await service.sample_once()
        tick = service._queues["BTCUSDT"].get_nowait()
        assert tick.liq_notional_same_side == 1_000_000.0
        status = await service.process_tick("BTCUSDT", tick)
        assert status.median_liq == 1_000_000.0
        assert status.lq == 1.0

    @pytest.mark.asyncio
    async def test_reconnects_after_stream_failure(self, service, feed, monkeypatch, caplog):
        connects = []

        async def stream():
            connects.append(len(connects) + 1)
            if len(connects) == 1:
                raise ConnectionError("socket closed")
            yield ("ETHUSDT", "short", 42.0)
            await asyncio.Event().wait()

        feed.stream_liquidations = MagicMock(side_effect=stream)
        monkeypatch.setattr("cascade.service.LIQUIDATION_MAX_BACKOFF_SECONDS", 0)
        service._running = True
        task = asyncio.create_task(service._liquidation_loop())
        try:
            await _until(lambda: service._builders["ETHUSDT"].dominant_side == "short")
        finally:
            await _cancel(service, task)
        assert connects == [1, 2]
        assert "socket closed" in caplog.text
        assert "reconnecting in 0s (attempt 1)" in caplog.text

    @pytest.mark.asyncio
    async def test_start_runs_the_stream(self, service, feed):
        await service.start()
        try:
            await _until(lambda: feed.stream_liquidations.called)
            assert not service._liquidation_task.done()
        finally:
            await service.stop()
        assert service._liquidation_task is None



class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self, service, feed):
        await service.start()
        assert service.running is True
        feed.start.assert_awaited_once()
        assert set(service._workers) == {"BTCUSDT", "ETHUSDT"}
        await service.stop()
        assert service.running is False
        assert service._workers == {}
        feed.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, service):
        await service.start()
        sampler = service._sampler_task
        await service.start()
        assert service._sampler_task is sampler
        await service.stop()

    @pytest.mark.asyncio
    async def test_workers_process_submitted_ticks(self, service, emitter):
        await service.start()
        try:
            service.submit_tick("ETHUSDT", Tick(5.0, 0.0, 100.0, False))
            await asyncio.wait_for(service._queues["ETHUSDT"].join(), timeout=2)
            symbols = {call.args[1]["symbol"] for call in emitter.emit.await_args_list}
            assert "ETHUSDT" in symbols
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_worker_survives_errors(self, service, emitter):
        emitter.emit.side_effect = RuntimeError("dashboard down")
        await service.start()
        try:
            service.submit_tick("BTCUSDT", Tick(5.0, 0.0, 100.0, False))
            service.submit_tick("BTCUSDT", Tick(5.0, 0.0, 100.0, False))
            await asyncio.wait_for(service._queues["BTCUSDT"].join(), timeout=2)
            assert not service._workers["BTCUSDT"].done()
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_sync_symbols_while_running(self, service):
        await service.start()
        try:
            added, removed = service.sync_symbols(["ETHUSDT", "SOLUSDT"])
            assert added == ["SOLUSDT"]
            assert removed == ["BTCUSDT"]
            assert set(service._workers) == {"ETHUSDT", "SOLUSDT"}
            assert "BTCUSDT" not in service._queues
            service.on_liquidation("BTCUSDT", "long", 1.0)  # no longer monitored
        finally:
            await service.stop()


class TestPassThrough:
    def test_auto_enabled(self, service):
        service.set_auto_enabled(False)
        assert service.get_auto_enabled() is False
        service.set_auto_enabled(True, "BTCUSDT")
        assert service.get_auto_enabled("BTCUSDT") is True

    def test_status_queries(self, service):
        assert service.get_current_status("BTCUSDT").light == AlertLevel.GREEN
        assert service.get_current_status("DOGEUSDT") is None
        assert service.get_aggregate_status().symbol_count == 2
        assert service.is_blocking() is False
