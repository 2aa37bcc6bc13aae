"""
Analysis Engine Module

Derives per-holding analytics from price history:
- Technical indicators (RSI, SMA, MACD, ATR, relative strength)
- Risk metrics (trailing stop, concentration, tax-lot timing)
- Momentum score, trend and signal
"""

__version__ = "0.0.1"
