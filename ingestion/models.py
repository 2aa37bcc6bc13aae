"""
Canonical record types produced by the ingestion layer.
Plain dataclasses - no IO, no validation beyond construction.
"""

from dataclasses import dataclass, asdict, fields
from datetime import date
from typing import Dict, Any, Optional


@dataclass
class Holding:
    """One position from a brokerage export, keyed by (symbol, account_type)."""
    symbol: str
    description: str
    quantity: float
    cost_basis: float
    total_cost_basis: float
    current_price: float
    market_value: float
    gain_loss: float
    gain_loss_percent: float
    account_type: str
    sector: str = ''
    industry: str = ''
    # Extended attributes (dividend/tax-rich exports only)
    country: Optional[str] = None
    currency: Optional[str] = None
    pe_ratio: Optional[float] = None
    eps: Optional[float] = None
    beta: Optional[float] = None
    expense_ratio: Optional[float] = None
    dividend_yield: Optional[float] = None
    dividend_yield_on_cost: Optional[float] = None
    dividends_per_share: Optional[float] = None
    dividends_received: Optional[float] = None
    dividend_growth_5y: Optional[float] = None
    next_payment_date: Optional[str] = None
    next_payment_amount: Optional[float] = None
    ex_dividend_date: Optional[str] = None
    daily_change_dollar: Optional[float] = None
    daily_change_percent: Optional[float] = None
    irr: Optional[float] = None
    realized_pnl: Optional[float] = None
    total_profit: Optional[float] = None
    total_profit_percent: Optional[float] = None
    tax: Optional[float] = None
    portfolio_share_percent: Optional[float] = None
    target_share_percent: Optional[float] = None
    category: Optional[str] = None
    isin: Optional[str] = None
    asset_type: Optional[str] = None

    @property
    def key(self):
        return (self.symbol, self.account_type)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Holding':
        """Build from a dict (e.g. a database row), ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class OhlcvBar:
    """Daily price bar. Dates are unique per symbol."""
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QuoteSnapshot:
    """Point-in-time quote from the market-data source."""
    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    day_high: float = 0.0
    day_low: float = 0.0
    volume: int = 0
    fifty_two_week_high: float = 0.0
    fifty_two_week_low: float = 0.0
    market_cap: float = 0.0
    trailing_pe: float = 0.0
    forward_pe: float = 0.0
    dividend_yield: float = 0.0
    sector: str = ''
    industry: str = ''
