"""
Indicator engine - composes indicator series into latest-bar signals.
Pure function of the bar series: no clock, no randomness, no shared state.
"""

from typing import List, Optional, Sequence

from analysis.calculations.indicators import (
    IndicatorError,
    atr,
    latest,
    macd,
    previous,
    rsi,
    sma,
    total_return_pct,
)
from analysis.models import MacdValues, TechnicalSignals
from ingestion.models import OhlcvBar
from ingestion.transforms.normalizers import sort_bars


RSI_PERIOD = 14
SMA_FAST_PERIOD = 50
SMA_SLOW_PERIOD = 200
MACD_FAST_PERIOD = 12
MACD_SLOW_PERIOD = 26
MACD_SIGNAL_PERIOD = 9
ATR_PERIOD = 14

# Used when history is shorter than the RSI window
NEUTRAL_RSI = 50.0


def compute_technicals(
    symbol: str,
    bars: Sequence[OhlcvBar],
    benchmark_bars: Optional[Sequence[OhlcvBar]] = None
) -> TechnicalSignals:
    """
    Compute technical signals for the latest bar of a price history.

    Bars are sorted by date here; callers need not pre-sort. Each indicator
    falls back to a documented default when history is too short:
    RSI 50, SMA = current price, MACD 0, ATR 0 (0 means unknown volatility),
    relative strength 0.

    Args:
        symbol: Ticker the history belongs to
        bars: Daily OHLCV history
        benchmark_bars: Benchmark history (e.g. SPY) for relative strength

    Returns:
        TechnicalSignals for the most recent bar
    """
    ordered = sort_bars(bars)
    closes = [bar.close for bar in ordered]
    highs = [bar.high for bar in ordered]
    lows = [bar.low for bar in ordered]
    current_price = closes[-1] if closes else 0.0

    try:
        rsi14 = latest(rsi(closes, RSI_PERIOD), NEUTRAL_RSI)
    except IndicatorError:
        rsi14 = NEUTRAL_RSI

    sma_fast_values = _sma_or_empty(closes, SMA_FAST_PERIOD)
    sma_slow_values = _sma_or_empty(closes, SMA_SLOW_PERIOD)
    sma50 = latest(sma_fast_values, current_price)
    sma200 = latest(sma_slow_values, current_price)

    golden_cross = False
    death_cross = False
    if len(sma_slow_values) > 0:
        # A single SMA200 value compares against itself
        prev_sma50 = previous(sma_fast_values, sma50)
        prev_sma200 = previous(sma_slow_values, sma200)
        golden_cross = prev_sma50 <= prev_sma200 and sma50 > sma200
        death_cross = prev_sma50 >= prev_sma200 and sma50 < sma200

    try:
        macd_line, signal_line, histogram = macd(
            closes, MACD_FAST_PERIOD, MACD_SLOW_PERIOD, MACD_SIGNAL_PERIOD
        )
        macd_values = MacdValues(
            macd=latest(macd_line, 0.0),
            signal=latest(signal_line, 0.0),
            histogram=latest(histogram, 0.0),
        )
    except IndicatorError:
        macd_values = MacdValues()

    try:
        atr14 = latest(atr(highs, lows, closes, ATR_PERIOD), 0.0)
    except IndicatorError:
        atr14 = 0.0

    return TechnicalSignals(
        symbol=symbol,
        rsi14=rsi14,
        sma50=sma50,
        sma200=sma200,
        macd=macd_values,
        atr14=atr14,
        price_vs_sma50=_percent_from(current_price, sma50),
        price_vs_sma200=_percent_from(current_price, sma200),
        golden_cross=golden_cross,
        death_cross=death_cross,
        relative_strength_vs_spy=relative_strength(ordered, benchmark_bars),
        current_price=current_price,
    )


def relative_strength(
    bars: Sequence[OhlcvBar],
    benchmark_bars: Optional[Sequence[OhlcvBar]]
) -> float:
    """
    Holding total return minus benchmark total return, in percentage points.

    The benchmark is clipped to the holding's first..last date so both
    returns cover the same calendar span.

    Returns:
        Relative strength, or 0.0 when either side has fewer than 2 points
    """
    if not bars or not benchmark_bars:
        return 0.0

    ordered = sort_bars(bars)
    start, end = ordered[0].date, ordered[-1].date
    benchmark_closes = [
        bar.close for bar in sort_bars(benchmark_bars)
        if start <= bar.date <= end
    ]

    try:
        holding_return = total_return_pct([bar.close for bar in ordered])
        benchmark_return = total_return_pct(benchmark_closes)
    except IndicatorError:
        return 0.0

    return holding_return - benchmark_return


def _sma_or_empty(closes: List[float], period: int):
    try:
        return sma(closes, period)
    except IndicatorError:
        return []


def _percent_from(price: float, average: float) -> float:
    if average <= 0:
        return 0.0
    return (price - average) / average * 100
