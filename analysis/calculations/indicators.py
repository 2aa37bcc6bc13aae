"""
Technical indicator utilities.
Pure functions over price arrays in chronological order.

Every function returns the full indicator series (one value per bar once
the lookback window is filled) and raises IndicatorError when the input is
shorter than the window.
"""

import numpy as np
from typing import Dict, Sequence, Tuple


class IndicatorError(Exception):
    """Raised when indicator calculation fails."""
    pass


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _check_window(length: int, period: int, needed: int) -> None:
    if period < 1:
        raise IndicatorError(f"Period must be positive, got {period}")
    if length < needed:
        raise IndicatorError(f"Insufficient data: need {needed} values, have {length}")


def sma(values: Sequence[float], period: int) -> np.ndarray:
    """
    Simple moving average.

    Args:
        values: Prices in chronological order
        period: Window size

    Returns:
        Array of length len(values) - period + 1; last element is the latest SMA

    Raises:
        IndicatorError: If fewer than period values
    """
    arr = _as_array(values)
    _check_window(len(arr), period, period)

    windows = np.lib.stride_tricks.sliding_window_view(arr, period)
    return windows.mean(axis=1)


def ema(values: Sequence[float], period: int) -> np.ndarray:
    """
    Exponential moving average seeded with the SMA of the first window.

    Formula: EMA_t = (P_t - EMA_{t-1}) × k + EMA_{t-1}, k = 2 / (period + 1)

    Returns:
        Array of length len(values) - period + 1

    Raises:
        IndicatorError: If fewer than period values
    """
    arr = _as_array(values)
    _check_window(len(arr), period, period)

    k = 2.0 / (period + 1)
    result = [float(arr[:period].mean())]
    for price in arr[period:]:
        result.append((float(price) - result[-1]) * k + result[-1])

    return np.array(result)


def wilder_smooth(values: Sequence[float], period: int) -> np.ndarray:
    """
    Wilder's smoothing (RMA): seed with the mean, then
    avg_t = (avg_{t-1} × (period - 1) + x_t) / period.

    Returns:
        Array of length len(values) - period + 1

    Raises:
        IndicatorError: If fewer than period values
    """
    arr = _as_array(values)
    _check_window(len(arr), period, period)

    result = [float(arr[:period].mean())]
    for value in arr[period:]:
        result.append((result[-1] * (period - 1) + float(value)) / period)

    return np.array(result)


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # Flat window: no direction either way
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(closes: Sequence[float], period: int = 14) -> np.ndarray:
    """
    Wilder relative strength index.

    Args:
        closes: Closing prices in chronological order
        period: Lookback period

    Returns:
        Array of length len(closes) - period, values in [0, 100]

    Raises:
        IndicatorError: If fewer than period + 1 closes
    """
    arr = _as_array(closes)
    _check_window(len(arr), period, period + 1)

    changes = np.diff(arr)
    gains = np.clip(changes, 0, None)
    losses = np.clip(-changes, 0, None)

    avg_gains = wilder_smooth(gains, period)
    avg_losses = wilder_smooth(losses, period)

    return np.array([_rsi_value(g, l) for g, l in zip(avg_gains, avg_losses)])


def macd(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Moving Average Convergence Divergence on exponential averages.

    Returns:
        Tuple (macd_line, signal_line, histogram):
        - macd_line: length len(closes) - slow_period + 1
        - signal_line and histogram: length len(macd_line) - signal_period + 1,
          empty while the MACD line is shorter than signal_period

    Raises:
        IndicatorError: If fewer than slow_period closes
    """
    arr = _as_array(closes)
    if fast_period >= slow_period:
        raise IndicatorError("fast_period must be shorter than slow_period")
    _check_window(len(arr), slow_period, slow_period)

    fast = ema(arr, fast_period)
    slow = ema(arr, slow_period)

    # Align the fast EMA with the first bar the slow EMA covers
    macd_line = fast[slow_period - fast_period:] - slow

    if len(macd_line) < signal_period:
        return macd_line, np.array([]), np.array([])

    signal_line = ema(macd_line, signal_period)
    histogram = macd_line[signal_period - 1:] - signal_line

    return macd_line, signal_line, histogram


def true_range(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float]
) -> np.ndarray:
    """
    True range for every bar that has a previous close.

    TR_t = max(H_t - L_t, |H_t - C_{t-1}|, |L_t - C_{t-1}|)

    Returns:
        Array of length len(closes) - 1

    Raises:
        IndicatorError: If inputs differ in length or have fewer than 2 bars
    """
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if not (len(h) == len(l) == len(c)):
        raise IndicatorError("Highs, lows and closes must have same length")
    _check_window(len(c), 1, 2)

    prev_close = c[:-1]
    ranges = np.vstack([
        h[1:] - l[1:],
        np.abs(h[1:] - prev_close),
        np.abs(l[1:] - prev_close),
    ])
    return ranges.max(axis=0)


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14
) -> np.ndarray:
    """
    Wilder average true range.

    Returns:
        Array of length len(closes) - period

    Raises:
        IndicatorError: If fewer than period + 1 bars
    """
    _check_window(len(closes), period, period + 1)
    return wilder_smooth(true_range(highs, lows, closes), period)


def bollinger_bands(
    closes: Sequence[float],
    period: int = 20,
    num_std: float = 2.0
) -> Dict[str, np.ndarray]:
    """
    Bollinger bands: SMA middle band ± num_std population standard deviations.

    Returns:
        Dictionary with 'middle', 'upper', 'lower' arrays of length
        len(closes) - period + 1

    Raises:
        IndicatorError: If fewer than period closes
    """
    arr = _as_array(closes)
    _check_window(len(arr), period, period)

    windows = np.lib.stride_tricks.sliding_window_view(arr, period)
    middle = windows.mean(axis=1)
    deviation = windows.std(axis=1)

    return {
        'middle': middle,
        'upper': middle + num_std * deviation,
        'lower': middle - num_std * deviation,
    }


def total_return_pct(closes: Sequence[float]) -> float:
    """
    Percent return from first to last close.

    Formula: (P_last / P_first - 1) × 100

    Raises:
        IndicatorError: If fewer than 2 closes or first close is not positive
    """
    arr = _as_array(closes)
    _check_window(len(arr), 1, 2)

    if arr[0] <= 0:
        raise IndicatorError("First close must be positive")

    return float((arr[-1] / arr[0] - 1) * 100)


def latest(series: np.ndarray, default: float) -> float:
    """Last element of an indicator series, or default when empty."""
    if len(series) == 0:
        return default
    return float(series[-1])


def previous(series: np.ndarray, default: float) -> float:
    """Second-to-last element, or default when fewer than 2 values."""
    if len(series) < 2:
        return default
    return float(series[-2])
