"""
Tests for the indicator engine - latest-bar signals and documented defaults.
"""

import pytest
from datetime import date, timedelta

from analysis.calculations.technicals import compute_technicals, relative_strength
from analysis.models import MacdValues
from ingestion.models import OhlcvBar


def make_bars(closes, start=date(2023, 1, 2)):
    """Daily bars with a ±1 range around each close."""
    return [
        OhlcvBar(
            date=start + timedelta(days=i),
            open=close,
            high=close + 1,
            low=close - 1,
            close=close,
            volume=1000,
        )
        for i, close in enumerate(closes)
    ]


class TestDefaults:
    """Short histories fall back to documented defaults."""

    def test_empty_history(self):
        signals = compute_technicals('AAPL', [])

        assert signals.current_price == 0.0
        assert signals.rsi14 == 50.0
        assert signals.sma50 == 0.0
        assert signals.sma200 == 0.0
        assert signals.macd == MacdValues(0.0, 0.0, 0.0)
        assert signals.atr14 == 0.0
        assert signals.price_vs_sma50 == 0.0
        assert signals.relative_strength_vs_spy == 0.0
        assert not signals.golden_cross
        assert not signals.death_cross

    def test_rsi_defaults_below_fifteen_closes(self):
        for length in (1, 13, 14):
            signals = compute_technicals('AAPL', make_bars([100 + i for i in range(length)]))
            assert signals.rsi14 == 50.0

    def test_rsi_computed_from_fifteen_closes(self):
        signals = compute_technicals('AAPL', make_bars([100 + i for i in range(15)]))
        assert signals.rsi14 == pytest.approx(100.0)

    def test_sma_defaults_to_last_close(self):
        closes = [100 + i for i in range(49)]
        signals = compute_technicals('AAPL', make_bars(closes))

        assert signals.sma50 == closes[-1]
        assert signals.sma200 == closes[-1]
        assert signals.price_vs_sma50 == 0.0
        assert signals.price_vs_sma200 == 0.0

    def test_macd_without_signal_line(self):
        closes = [100 + i for i in range(30)]
        signals = compute_technicals('AAPL', make_bars(closes))

        assert signals.macd.macd > 0
        assert signals.macd.signal == 0.0
        assert signals.macd.histogram == 0.0

    def test_macd_zero_below_slow_window(self):
        signals = compute_technicals('AAPL', make_bars([100 + i for i in range(25)]))
        assert signals.macd == MacdValues()

    def test_atr_needs_fifteen_bars(self):
        assert compute_technicals('AAPL', make_bars([100.0] * 14)).atr14 == 0.0
        assert compute_technicals('AAPL', make_bars([100.0] * 15)).atr14 == pytest.approx(2.0)


class TestCrosses:
    """Golden/death cross between the last two bars."""

    def test_golden_cross(self):
        signals = compute_technicals('AAPL', make_bars([100.0] * 200 + [110.0]))

        assert signals.golden_cross
        assert not signals.death_cross
        assert signals.sma50 == pytest.approx(100.2)
        assert signals.sma200 == pytest.approx(100.05)

    def test_death_cross(self):
        signals = compute_technicals('AAPL', make_bars([100.0] * 200 + [90.0]))

        assert signals.death_cross
        assert not signals.golden_cross

    def test_single_sma200_value_uses_it_as_previous(self):
        # 200 bars give one SMA200; previous SMA50 (100) sits under it
        signals = compute_technicals('AAPL', make_bars([100.0] * 199 + [110.0]))

        assert signals.sma50 == pytest.approx(100.2)
        assert signals.sma200 == pytest.approx(100.05)
        assert signals.golden_cross
        assert not signals.death_cross

    def test_no_cross_without_sma200(self):
        signals = compute_technicals('AAPL', make_bars([100.0] * 198 + [110.0]))

        assert not signals.golden_cross
        assert not signals.death_cross

    def test_no_cross_in_steady_trend(self):
        signals = compute_technicals('AAPL', make_bars([100 + i * 0.5 for i in range(260)]))

        assert signals.sma50 > signals.sma200
        assert not signals.golden_cross
        assert not signals.death_cross


class TestRelativeStrength:

    def test_benchmark_clipped_to_holding_span(self):
        holding = make_bars([100.0, 105.0, 110.0], start=date(2024, 1, 10))
        benchmark = (
            make_bars([50.0], start=date(2024, 1, 1))
            + make_bars([100.0, 102.0, 105.0], start=date(2024, 1, 10))
            + make_bars([500.0], start=date(2024, 2, 1))
        )

        # 10% holding return minus 5% benchmark return over the same dates
        assert relative_strength(holding, benchmark) == pytest.approx(5.0)

        signals = compute_technicals('AAPL', holding, benchmark)
        assert signals.relative_strength_vs_spy == pytest.approx(5.0)

    def test_short_benchmark_is_zero(self):
        holding = make_bars([100.0, 110.0], start=date(2024, 1, 10))
        benchmark = make_bars([100.0], start=date(2024, 1, 10))

        assert relative_strength(holding, benchmark) == 0.0

    def test_missing_benchmark_is_zero(self):
        holding = make_bars([100.0, 110.0])

        assert relative_strength(holding, None) == 0.0
        assert relative_strength(holding, []) == 0.0


class TestDeterminism:

    def test_unsorted_input_matches_sorted(self):
        bars = make_bars([100 + (i % 9) - i * 0.1 for i in range(120)])

        assert compute_technicals('AAPL', list(reversed(bars))) == compute_technicals('AAPL', bars)

    def test_repeat_calls_identical(self):
        bars = make_bars([100 + (i % 11) * 0.7 for i in range(250)])
        benchmark = make_bars([400 + i * 0.2 for i in range(250)])

        first = compute_technicals('AAPL', bars, benchmark)
        second = compute_technicals('AAPL', bars, benchmark)

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_price_vs_sma(self):
        signals = compute_technicals('AAPL', make_bars([100.0] * 49 + [150.0]))

        assert signals.sma50 == pytest.approx(101.0)
        assert signals.price_vs_sma50 == pytest.approx((150.0 - 101.0) / 101.0 * 100)
