"""
Momentum model - fuses technical signals into one bounded score.
Pure function of TechnicalSignals; the tables below are fixed product policy.
"""

import math
from typing import Dict, Tuple

from analysis.models import MomentumScore, TechnicalSignals


# Component: (multiplier applied to the raw input, clamp bound)
MOMENTUM_WEIGHTS: Dict[str, Tuple[float, float]] = {
    'rsi': (1.0, 25.0),
    'sma50': (2.0, 20.0),
    'sma200': (1.0, 15.0),
    'macd': (10.0, 20.0),
    'relative_strength': (1.0, 20.0),
}

SCORE_BOUND = 100

# RSI sweet spot [50, 65] and the flat bands around it
RSI_SWEET_SPOT = (50.0, 65.0, 25.0)
RSI_WARM = (65.0, 70.0, 15.0)
RSI_NEUTRAL = (40.0, 50.0, 5.0)
RSI_WEAK = (30.0, 40.0, -10.0)

# Overbought: 25 - (rsi - 70) × 2.5; oversold: -15 - (30 - rsi); both floored
RSI_OVERBOUGHT_LEVEL = 70.0
RSI_OVERBOUGHT_DECAY = 2.5
RSI_OVERSOLD_LEVEL = 30.0
RSI_OVERSOLD_BASE = -15.0
RSI_SCORE_FLOOR = -25.0

# (minimum score, signal), checked in order
SIGNAL_THRESHOLDS: Tuple[Tuple[int, str], ...] = (
    (50, 'strong_buy'),
    (20, 'buy'),
    (-10, 'hold'),
    (-40, 'caution'),
)

ACCELERATING_SCORE = 40
DECELERATING_FLOOR = -20


def compute_momentum(signals: TechnicalSignals) -> MomentumScore:
    """
    Compute the momentum score for a symbol's technical signals.

    Each component is clamped to its own bound before summation; the total
    is rounded half-up and clamped to [-100, 100].

    Args:
        signals: TechnicalSignals for the latest bar

    Returns:
        MomentumScore with trend, signal and component breakdown
    """
    components = {
        'rsi': rsi_component(signals.rsi14),
        'sma50': _weighted('sma50', signals.price_vs_sma50),
        'sma200': _weighted('sma200', signals.price_vs_sma200),
        'macd': _weighted('macd', signals.macd.histogram),
        'relative_strength': _weighted('relative_strength', signals.relative_strength_vs_spy),
    }

    total = math.floor(sum(components.values()) + 0.5)
    score = int(_clamp(total, SCORE_BOUND))

    return MomentumScore(
        symbol=signals.symbol,
        score=score,
        trend=classify_trend(score, signals.macd.histogram, signals.price_vs_sma50),
        signal=classify_signal(score),
        components=components,
    )


def rsi_component(rsi: float) -> float:
    """Score RSI by band: rewards 50-65, penalizes overbought and oversold."""
    if RSI_SWEET_SPOT[0] <= rsi <= RSI_SWEET_SPOT[1]:
        return RSI_SWEET_SPOT[2]
    if RSI_WARM[0] < rsi <= RSI_WARM[1]:
        return RSI_WARM[2]
    if rsi > RSI_OVERBOUGHT_LEVEL:
        decayed = RSI_SWEET_SPOT[2] - (rsi - RSI_OVERBOUGHT_LEVEL) * RSI_OVERBOUGHT_DECAY
        return max(RSI_SCORE_FLOOR, decayed)
    if RSI_NEUTRAL[0] <= rsi < RSI_NEUTRAL[1]:
        return RSI_NEUTRAL[2]
    if RSI_WEAK[0] <= rsi < RSI_WEAK[1]:
        return RSI_WEAK[2]
    return max(RSI_SCORE_FLOOR, RSI_OVERSOLD_BASE - (RSI_OVERSOLD_LEVEL - rsi))


def classify_trend(score: int, macd_histogram: float, price_vs_sma50: float) -> str:
    if score > ACCELERATING_SCORE and macd_histogram > 0 and price_vs_sma50 > 0:
        return 'accelerating'
    if 0 < score <= ACCELERATING_SCORE:
        return 'steady'
    if DECELERATING_FLOOR < score <= 0:
        return 'decelerating'
    return 'rolling_over'


def classify_signal(score: int) -> str:
    for minimum, signal in SIGNAL_THRESHOLDS:
        if score >= minimum:
            return signal
    return 'sell'


def _weighted(name: str, value: float) -> float:
    multiplier, bound = MOMENTUM_WEIGHTS[name]
    return _clamp(value * multiplier, bound)


def _clamp(value: float, bound: float) -> float:
    return max(-bound, min(bound, value))
