"""
Result types for the analysis engine.
Each layer is a plain dataclass that round-trips through dicts for caching.
"""

from dataclasses import dataclass, asdict, field
from typing import Dict, Any, Optional


@dataclass(frozen=True)
class MacdValues:
    macd: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


@dataclass(frozen=True)
class TechnicalSignals:
    """Latest-bar indicator values for one symbol."""
    symbol: str
    rsi14: float
    sma50: float
    sma200: float
    macd: MacdValues
    atr14: float
    price_vs_sma50: float
    price_vs_sma200: float
    golden_cross: bool
    death_cross: bool
    relative_strength_vs_spy: float
    current_price: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TechnicalSignals':
        values = dict(data)
        values['macd'] = MacdValues(**values.get('macd', {}))
        return cls(**values)


@dataclass(frozen=True)
class RiskMetrics:
    """Point-in-time risk view of one position."""
    symbol: str
    trailing_stop_price: float
    trailing_stop_percent: float
    portfolio_weight: float
    sector_weight: float
    risk_level: str
    risk_points: int
    days_until_long_term: Optional[int] = None
    next_earnings_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RiskMetrics':
        return cls(**data)


@dataclass(frozen=True)
class MomentumScore:
    """Bounded momentum score with trend and trade signal."""
    symbol: str
    score: int
    trend: str
    signal: str
    components: Dict[str, float] = field(default_factory=dict, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MomentumScore':
        return cls(**data)
