"""
Data Ingestion Module

Turns external data into canonical records:
- Brokerage CSV exports into holdings (two export dialects)
- yfinance price history and quotes into bars and quote snapshots
"""

__version__ = "0.0.1"
