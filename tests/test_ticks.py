"""Tests for cascade/ticks.py -- TickBuilder."""

import math

import pytest

from cascade.ticks import LONG, SHORT, Tick, TickBuilder


@pytest.fixture
def builder():
    return TickBuilder("BTCUSDT")


class TestRecordLiquidation:
    def test_accumulates_per_side(self, builder):
        builder.record_liquidation("long", 100.0)
        builder.record_liquidation("LONG", 50.0)
        builder.record_liquidation("short", 120.0)
        assert builder.dominant_side == LONG

    def test_no_liquidations(self, builder):
        assert builder.dominant_side is None

    def test_invalid_notional_ignored(self, builder):
        builder.record_liquidation("short", float("nan"))
        builder.record_liquidation("short", -10.0)
        builder.record_liquidation("short", 0.0)
        assert builder.dominant_side is None

    def test_non_numeric_notional_ignored(self, builder, caplog):
        builder.record_liquidation("long", None)
        builder.record_liquidation("long", "abc")
        assert builder.dominant_side is None
        assert "bad liquidation notional" in caplog.text

    def test_numeric_string_notional_accepted(self, builder):
        builder.record_liquidation("short", "1500.5")
        tick = builder.build(100.0, 10.0)
        assert tick.liq_notional_same_side == 1500.5

    def test_unknown_side_ignored(self, builder, caplog):
        builder.record_liquidation("sideways", 10.0)
        assert builder.dominant_side is None
        assert "unknown liquidation side" in caplog.text


class TestBuild:
    def test_first_tick(self, builder):
        tick = builder.build(100.0, 5000.0)
        assert tick == Tick(0.0, 0.0, 5000.0, False)

    def test_return_from_previous_price(self, builder):
        builder.build(100.0, 5000.0)
        tick = builder.build(101.0, 5000.0)
        assert tick.ret_1s == pytest.approx(0.01)

    def test_long_liquidations_match_falling_price(self, builder):
        builder.build(100.0, 5000.0)
        builder.record_liquidation(LONG, 250_000.0)
        tick = builder.build(99.0, 4900.0)
        assert tick.liq_notional_same_side == 250_000.0
        assert tick.ret_side_matches_liq is True

    def test_short_liquidations_match_rising_price(self, builder):
        builder.build(100.0, 5000.0)
        builder.record_liquidation(SHORT, 80_000.0)
        builder.record_liquidation(LONG, 10_000.0)
        tick = builder.build(100.5, 5000.0)
        assert tick.liq_notional_same_side == 80_000.0
        assert tick.ret_side_matches_liq is True

    def test_against_the_move_does_not_match(self, builder):
        builder.build(100.0, 5000.0)
        builder.record_liquidation(LONG, 1000.0)
        assert builder.build(101.0, 5000.0).ret_side_matches_liq is False

    def test_flat_price_does_not_match(self, builder):
        builder.build(100.0, 5000.0)
        builder.record_liquidation(SHORT, 1000.0)
        assert builder.build(100.0, 5000.0).ret_side_matches_liq is False

    def test_accumulators_reset(self, builder):
        builder.record_liquidation(LONG, 1000.0)
        builder.build(100.0, 5000.0)
        tick = builder.build(100.0, 5000.0)
        assert tick.liq_notional_same_side == 0.0
        assert builder.dominant_side is None

    def test_missing_price_reuses_previous(self, builder):
        builder.build(100.0, 5000.0)
        assert builder.build(None, 5000.0).ret_1s == 0.0
        assert builder.build(102.0, 5000.0).ret_1s == pytest.approx(0.02)

    def test_missing_open_interest_reuses_last(self, builder):
        builder.build(100.0, 5000.0)
        assert builder.build(100.0, None).oi_snapshot == 5000.0

    def test_no_open_interest_yet_is_nan(self, builder):
        tick = builder.build(100.0, None)
        assert math.isnan(tick.oi_snapshot)

    def test_non_positive_price_ignored(self, builder):
        builder.build(100.0, 5000.0)
        assert builder.build(0.0, 5000.0).ret_1s == 0.0
        assert builder.build(101.0, 5000.0).ret_1s == pytest.approx(0.01)
