"""
yfinance adapter - fetch price history and quotes from Yahoo Finance.
Network IO allowed here, but minimal business logic.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from typing import Dict, Any, List, Optional

import pandas as pd
import yfinance as yf

from ingestion.models import QuoteSnapshot


logger = logging.getLogger(__name__)

# Lookback windows accepted by fetch_history, in days
HISTORY_PERIODS = {
    '3m': 91,
    '6m': 182,
    '1y': 365,
    '2y': 730,
}

DEFAULT_PERIOD = '1y'


class YFinanceError(Exception):
    """Raised when yfinance operations fail."""
    pass


def fetch_history(
    ticker: str,
    period: str = DEFAULT_PERIOD,
    end: Optional[date] = None
) -> List[Dict[str, Any]]:
    """
    Fetch daily price history for a ticker over a lookback period.
    Returns raw data in provider format - no normalization.

    Args:
        ticker: Stock ticker symbol (e.g., 'AAPL')
        period: One of '3m', '6m', '1y', '2y' (unknown values fall back to '1y')
        end: Last date of the window (inclusive, defaults to today)

    Returns:
        List of raw price dictionaries in yfinance format

    Raises:
        YFinanceError: If fetch fails or validation fails
    """
    _validate_ticker(ticker)

    if end is None:
        end = date.today()

    days = HISTORY_PERIODS.get(period, HISTORY_PERIODS[DEFAULT_PERIOD])
    start = end - timedelta(days=days)

    try:
        # yfinance uses exclusive end dates, so add 1 day
        data = yf.download(
            ticker,
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            interval='1d',
            auto_adjust=False,
            progress=False
        )
    except Exception as e:
        raise YFinanceError(f"Failed to fetch history for {ticker}: {e}") from e

    if data is None or len(data) == 0:
        return []

    # Single-ticker downloads may still come back with (field, ticker) columns
    if isinstance(data.columns, pd.MultiIndex):
        data.columns = data.columns.get_level_values(0)

    rows = []
    for date_idx, row in data.iterrows():
        if 'Close' not in data.columns or pd.isna(row['Close']):
            continue

        row_dict = {'Date': date_idx.strftime('%Y-%m-%d')}
        for field in ['Open', 'High', 'Low', 'Close', 'Volume']:
            if field in data.columns and pd.notna(row[field]):
                row_dict[field] = float(row[field]) if field != 'Volume' else int(row[field])

        rows.append(row_dict)

    return rows


def fetch_quote(ticker: str) -> QuoteSnapshot:
    """
    Fetch a quote snapshot with sector/industry profile.

    Args:
        ticker: Stock ticker symbol

    Returns:
        QuoteSnapshot for the ticker

    Raises:
        YFinanceError: If the quote cannot be fetched or has no price
    """
    _validate_ticker(ticker)

    try:
        info = yf.Ticker(ticker).info or {}
    except Exception as e:
        raise YFinanceError(f"Failed to fetch quote for {ticker}: {e}") from e

    price = info.get('regularMarketPrice') or info.get('currentPrice')
    if not price:
        raise YFinanceError(f"No price in quote for {ticker}")

    # ETFs and funds often have no asset profile
    return QuoteSnapshot(
        symbol=ticker,
        price=float(price),
        change=float(info.get('regularMarketChange') or 0),
        change_percent=float(info.get('regularMarketChangePercent') or 0),
        day_high=float(info.get('regularMarketDayHigh') or 0),
        day_low=float(info.get('regularMarketDayLow') or 0),
        volume=int(info.get('regularMarketVolume') or 0),
        fifty_two_week_high=float(info.get('fiftyTwoWeekHigh') or 0),
        fifty_two_week_low=float(info.get('fiftyTwoWeekLow') or 0),
        market_cap=float(info.get('marketCap') or 0),
        trailing_pe=float(info.get('trailingPE') or 0),
        forward_pe=float(info.get('forwardPE') or 0),
        dividend_yield=float(info.get('dividendYield') or 0),
        sector=info.get('sector') or '',
        industry=info.get('industry') or '',
    )


def fetch_quotes(
    tickers: List[str],
    batch_size: int = 5,
    delay_seconds: float = 0.5
) -> Dict[str, QuoteSnapshot]:
    """
    Fetch quotes for many tickers in small concurrent batches.

    Each batch runs in a thread pool; batches are separated by a delay to
    stay under upstream rate limits. A failed ticker is logged and left out
    of the result rather than aborting the batch.

    Args:
        tickers: Ticker symbols (duplicates are fetched once)
        batch_size: Concurrent requests per batch
        delay_seconds: Pause between batches

    Returns:
        Dictionary mapping ticker to QuoteSnapshot for successful fetches
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    unique = list(dict.fromkeys(tickers))
    quotes: Dict[str, QuoteSnapshot] = {}

    for start in range(0, len(unique), batch_size):
        batch = unique[start:start + batch_size]

        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = {ticker: executor.submit(fetch_quote, ticker) for ticker in batch}
            for ticker, future in futures.items():
                try:
                    quotes[ticker] = future.result()
                except YFinanceError as e:
                    logger.warning("Quote fetch failed for %s: %s", ticker, e)

        if start + batch_size < len(unique) and delay_seconds > 0:
            time.sleep(delay_seconds)

    logger.info("Fetched %d of %d quotes", len(quotes), len(unique))
    return quotes


def _validate_ticker(ticker: str) -> None:
    """
    Basic ticker validation.

    Args:
        ticker: Stock ticker symbol

    Raises:
        YFinanceError: If ticker is invalid
    """
    if not ticker or not isinstance(ticker, str):
        raise YFinanceError("Ticker must be non-empty string")

    if len(ticker) > 10:
        raise YFinanceError("Ticker too long (max 10 characters)")

    # Allow alphanumeric plus common ticker chars
    allowed_chars = set('ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-^=')
    if not set(ticker.upper()).issubset(allowed_chars):
        raise YFinanceError(f"Ticker contains invalid characters: {ticker}")
