"""
Core validators for canonical holdings and price bars.
Pure functions - no IO, network, or side effects.
"""

import math
from datetime import date

from ingestion.models import Holding, OhlcvBar


class ValidationError(ValueError):
    """Raised when data validation fails."""
    pass


def validate_holding(holding: Holding) -> None:
    """
    Validate a parsed holding before it is stored.

    Args:
        holding: Holding produced by the parser

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(holding.symbol, str) or not holding.symbol:
        raise ValidationError("symbol must be a non-empty string")

    if holding.symbol != holding.symbol.upper():
        raise ValidationError(f"symbol must be uppercase, got {holding.symbol}")

    if not isinstance(holding.account_type, str) or not holding.account_type:
        raise ValidationError(f"account_type must be a non-empty string for {holding.symbol}")

    numeric_fields = [
        'quantity', 'cost_basis', 'total_cost_basis', 'current_price',
        'market_value', 'gain_loss', 'gain_loss_percent'
    ]
    for field in numeric_fields:
        value = getattr(holding, field)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValidationError(f"{field} must be numeric, got {type(value)}")

        if not math.isfinite(value):
            raise ValidationError(f"{field} must be finite, got {value}")

    if holding.quantity <= 0:
        raise ValidationError(f"quantity must be positive, got {holding.quantity}")

    for field in ['current_price', 'market_value', 'total_cost_basis']:
        if getattr(holding, field) < 0:
            raise ValidationError(f"{field} must be non-negative, got {getattr(holding, field)}")


def validate_bar(bar: OhlcvBar) -> None:
    """
    Validate a canonical price bar.

    Args:
        bar: Daily OHLCV bar

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(bar.date, date):
        raise ValidationError(f"date must be date, got {type(bar.date)}")

    for field in ['open', 'high', 'low', 'close']:
        value = getattr(bar, field)
        if not isinstance(value, (int, float)):
            raise ValidationError(f"{field} must be numeric, got {type(value)}")

        if not math.isfinite(value):
            raise ValidationError(f"{field} must be finite, got {value}")

        if value <= 0:
            raise ValidationError(f"{field} must be positive, got {value}")

    if not isinstance(bar.volume, int):
        raise ValidationError(f"volume must be integer, got {type(bar.volume)}")

    if bar.volume < 0:
        raise ValidationError(f"volume must be non-negative, got {bar.volume}")

    if bar.high < bar.low:
        raise ValidationError(f"high ({bar.high}) must be >= low ({bar.low})")
