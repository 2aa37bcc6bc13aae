"""
Risk engine - trailing stops, concentration and tax-lot timing per position.
Pure functions - no IO, no clock. Callable per symbol.
"""

import math
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union

from analysis.models import RiskMetrics, TechnicalSignals
from ingestion.models import Holding, OhlcvBar
from ingestion.transforms.normalizers import sort_bars


# Bars considered for the trailing-stop high
RECENT_HIGH_WINDOW = 20

# Stop trails the recent high by this many ATRs
ATR_STOP_MULTIPLIER = 2.0

# Flat stop used when volatility is unknown (ATR 0)
FALLBACK_STOP_RATIO = 0.9
FALLBACK_STOP_PERCENT = 10.0

# (threshold, points) pairs, checked in order; first match wins
CONCENTRATION_POINTS: Tuple[Tuple[float, int], ...] = (
    (20.0, 3),  # portfolio weight % above
    (10.0, 1),
)

STOP_PROXIMITY_POINTS: Tuple[Tuple[float, int], ...] = (
    (3.0, 2),  # stop distance % below
    (5.0, 1),
)

VOLATILITY_POINTS: Tuple[Tuple[float, int], ...] = (
    (3.0, 2),  # ATR as % of price above
    (2.0, 1),
)

# (minimum points, level), checked in order
RISK_LEVEL_THRESHOLDS: Tuple[Tuple[int, str], ...] = (
    (4, 'high'),
    (2, 'medium'),
    (0, 'low'),
)

UNKNOWN_SECTOR = 'Unknown'


class RiskError(Exception):
    """Raised when risk calculation fails."""
    pass


def compute_risk_metrics(
    symbol: str,
    current_price: float,
    market_value: float,
    total_portfolio_value: float,
    sector_value: float,
    total_sector_value: float,
    atr14: float,
    recent_history: Sequence[OhlcvBar],
    purchase_date: Optional[Union[date, str]] = None,
    as_of: Optional[date] = None,
    next_earnings_date: Optional[str] = None
) -> RiskMetrics:
    """
    Compute risk metrics for one position.

    Trailing stop = max(0, recent_high - 2 × ATR14), where recent_high is the
    highest high of the last 20 bars (never below the current price). With
    ATR14 = 0 the stop falls back to a flat 10% below the current price.

    Risk points accumulate from concentration, stop proximity and volatility;
    4+ points is 'high', 2+ is 'medium', otherwise 'low'.

    Args:
        symbol: Ticker
        current_price: Latest price
        market_value: Position value (all accounts)
        total_portfolio_value: Sum of all position values
        sector_value: Position value counted toward its sector
        total_sector_value: Sum of position values in the same sector
        atr14: 14-day average true range (0 = unknown)
        recent_history: Daily bars, any order
        purchase_date: Lot purchase date for long-term holding timing
        as_of: Reference date for tax-lot timing (defaults to latest bar date)
        next_earnings_date: Passed through when known

    Returns:
        RiskMetrics for the position

    Raises:
        RiskError: If prices or values are negative or non-finite
    """
    for name, value in [('current_price', current_price), ('market_value', market_value),
                        ('atr14', atr14)]:
        if not math.isfinite(value) or value < 0:
            raise RiskError(f"{name} must be a non-negative number, got {value}")

    ordered = sort_bars(recent_history)

    recent_high = current_price
    if ordered:
        recent_high = max(max(bar.high for bar in ordered[-RECENT_HIGH_WINDOW:]), current_price)

    if atr14 > 0:
        stop_price = max(0.0, recent_high - ATR_STOP_MULTIPLIER * atr14)
    else:
        stop_price = current_price * FALLBACK_STOP_RATIO

    if current_price > 0:
        stop_percent = (current_price - stop_price) / current_price * 100
    else:
        stop_percent = FALLBACK_STOP_PERCENT

    portfolio_weight = _safe_percent(market_value, total_portfolio_value)
    sector_weight = _safe_percent(sector_value, total_sector_value)
    atr_percent = _safe_percent(atr14, current_price)

    risk_points = (
        _points_above(portfolio_weight, CONCENTRATION_POINTS)
        + _points_below(stop_percent, STOP_PROXIMITY_POINTS)
        + _points_above(atr_percent, VOLATILITY_POINTS)
    )

    if as_of is None and ordered:
        as_of = ordered[-1].date

    return RiskMetrics(
        symbol=symbol,
        trailing_stop_price=stop_price,
        trailing_stop_percent=stop_percent,
        portfolio_weight=portfolio_weight,
        sector_weight=sector_weight,
        risk_level=risk_level_for(risk_points),
        risk_points=risk_points,
        days_until_long_term=days_until_long_term(purchase_date, as_of),
        next_earnings_date=next_earnings_date,
    )


def days_until_long_term(
    purchase_date: Optional[Union[date, str]],
    as_of: Optional[date]
) -> Optional[int]:
    """
    Days remaining until a lot becomes a long-term holding (one year).

    Feb 29 purchases reach their anniversary on Mar 1.

    Returns:
        Positive day count, or None when already long-term or dates missing
    """
    if purchase_date is None or as_of is None:
        return None

    if isinstance(purchase_date, str):
        try:
            purchase_date = date.fromisoformat(purchase_date[:10])
        except ValueError as e:
            raise RiskError(f"Invalid purchase date: {purchase_date!r}") from e

    try:
        anniversary = purchase_date.replace(year=purchase_date.year + 1)
    except ValueError:
        anniversary = date(purchase_date.year + 1, 3, 1)

    remaining = (anniversary - as_of).days
    return remaining if remaining > 0 else None


def risk_level_for(points: int) -> str:
    for minimum, level in RISK_LEVEL_THRESHOLDS:
        if points >= minimum:
            return level
    return 'low'


def compute_portfolio_risk(
    holdings: List[Holding],
    technicals_by_symbol: Dict[str, TechnicalSignals],
    history_by_symbol: Dict[str, Sequence[OhlcvBar]],
    purchase_dates: Optional[Dict[str, Union[date, str]]] = None
) -> Dict[str, RiskMetrics]:
    """
    Compute risk metrics for every symbol in a portfolio.

    Positions of one symbol held in several accounts are summed first.
    Holdings without a sector are grouped under 'Unknown'. A symbol with no
    technicals is treated as having unknown volatility (ATR 0).

    Args:
        holdings: Stored holdings (one per symbol/account)
        technicals_by_symbol: Latest TechnicalSignals per symbol
        history_by_symbol: Daily bars per symbol
        purchase_dates: Optional purchase date per symbol

    Returns:
        Dictionary mapping symbol to RiskMetrics
    """
    positions = aggregate_positions(holdings)
    purchase_dates = purchase_dates or {}
    total_portfolio_value, sector_totals = portfolio_totals(positions)

    results = {}
    for symbol, position in positions.items():
        technicals = technicals_by_symbol.get(symbol)
        history = history_by_symbol.get(symbol, [])

        current_price = position['current_price']
        if current_price <= 0 and technicals is not None:
            current_price = technicals.current_price

        results[symbol] = compute_risk_metrics(
            symbol=symbol,
            current_price=current_price,
            market_value=position['market_value'],
            total_portfolio_value=total_portfolio_value,
            sector_value=position['market_value'],
            total_sector_value=sector_totals[symbol],
            atr14=technicals.atr14 if technicals is not None else 0.0,
            recent_history=history,
            purchase_date=purchase_dates.get(symbol),
        )

    return results


def aggregate_positions(holdings: List[Holding]) -> Dict[str, Dict]:
    """
    Sum market value per symbol across accounts.

    Returns:
        Dictionary mapping symbol to {'market_value', 'current_price', 'sector'},
        in first-seen order
    """
    positions: Dict[str, Dict] = {}
    for holding in holdings:
        position = positions.setdefault(holding.symbol, {
            'market_value': 0.0,
            'current_price': 0.0,
            'sector': UNKNOWN_SECTOR,
        })
        position['market_value'] += holding.market_value
        if position['current_price'] <= 0 and holding.current_price > 0:
            position['current_price'] = holding.current_price
        if position['sector'] == UNKNOWN_SECTOR and holding.sector:
            position['sector'] = holding.sector

    return positions


def portfolio_totals(positions: Dict[str, Dict]) -> Tuple[float, Dict[str, float]]:
    """
    Denominators for portfolio and sector weights.

    Args:
        positions: Output of aggregate_positions

    Returns:
        Tuple of (total portfolio value, sector total per symbol). A symbol
        whose sector sums to zero gets its own market value as the total.
    """
    total_portfolio_value = sum(p['market_value'] for p in positions.values())

    by_sector: Dict[str, float] = {}
    for position in positions.values():
        sector = position['sector']
        by_sector[sector] = by_sector.get(sector, 0.0) + position['market_value']

    sector_totals = {
        symbol: by_sector[position['sector']] or position['market_value']
        for symbol, position in positions.items()
    }
    return total_portfolio_value, sector_totals


def _safe_percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100


def _points_above(value: float, table: Tuple[Tuple[float, int], ...]) -> int:
    for threshold, points in table:
        if value > threshold:
            return points
    return 0


def _points_below(value: float, table: Tuple[Tuple[float, int], ...]) -> int:
    for threshold, points in table:
        if value < threshold:
            return points
    return 0
