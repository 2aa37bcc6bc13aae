"""
Tests for yfinance adapter - mocked network calls, no live API hits in CI.
"""

import pytest
from unittest.mock import Mock, patch
from datetime import date
import pandas as pd

from ingestion.models import QuoteSnapshot
from ingestion.providers.yfinance_adapter import (
    fetch_history,
    fetch_quote,
    fetch_quotes,
    YFinanceError,
    _validate_ticker
)


def _price_frame():
    return pd.DataFrame({
        'Open': [185.25, 186.10],
        'High': [186.80, 187.45],
        'Low': [184.50, 185.80],
        'Close': [185.92, 187.11],
        'Adj Close': [185.75, 186.94],
        'Volume': [65284300, 58414500]
    }, index=pd.DatetimeIndex(['2024-01-15', '2024-01-16'], name='Date'))


class TestFetchHistory:
    """Tests for fetch_history function."""

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_fetch_history_success(self, mock_download):
        """Test successful history fetch with mocked yfinance."""
        mock_download.return_value = _price_frame()

        result = fetch_history('AAPL', period='3m', end=date(2024, 1, 16))

        mock_download.assert_called_once_with(
            'AAPL',
            start='2023-10-17',
            end='2024-01-17',  # yfinance end is exclusive
            interval='1d',
            auto_adjust=False,
            progress=False
        )

        assert len(result) == 2
        assert result[0]['Date'] == '2024-01-15'
        assert result[0]['Open'] == 185.25
        assert result[0]['Volume'] == 65284300
        assert result[1]['Close'] == 187.11

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_unknown_period_falls_back_to_one_year(self, mock_download):
        """Unrecognized periods use the 1y window."""
        mock_download.return_value = _price_frame()

        fetch_history('AAPL', period='10y', end=date(2024, 1, 16))

        assert mock_download.call_args.kwargs['start'] == '2023-01-16'

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_multiindex_columns_are_flattened(self, mock_download):
        """Test (field, ticker) column layout from newer yfinance releases."""
        frame = _price_frame()
        frame.columns = pd.MultiIndex.from_product([frame.columns, ['AAPL']])
        mock_download.return_value = frame

        result = fetch_history('AAPL', end=date(2024, 1, 16))

        assert result[1]['Close'] == 187.11
        assert result[1]['High'] == 187.45

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_empty_response(self, mock_download):
        """Test handling of empty yfinance response."""
        mock_download.return_value = pd.DataFrame()

        assert fetch_history('INVALID', end=date(2024, 1, 16)) == []

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_rows_without_close_are_skipped(self, mock_download):
        frame = _price_frame()
        frame.loc[frame.index[0], 'Close'] = float('nan')
        mock_download.return_value = frame

        result = fetch_history('AAPL', end=date(2024, 1, 16))

        assert [row['Date'] for row in result] == ['2024-01-16']

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_network_error(self, mock_download):
        """Test handling of network errors."""
        mock_download.side_effect = Exception("Network timeout")

        with pytest.raises(YFinanceError, match="Failed to fetch.*Network timeout"):
            fetch_history('AAPL', end=date(2024, 1, 16))


class TestFetchQuote:
    """Tests for quote snapshots."""

    @patch('ingestion.providers.yfinance_adapter.yf.Ticker')
    def test_fetch_quote_maps_info_fields(self, mock_ticker):
        mock_ticker.return_value = Mock(info={
            'regularMarketPrice': 187.11,
            'regularMarketChange': 1.19,
            'regularMarketChangePercent': 0.64,
            'fiftyTwoWeekHigh': 199.62,
            'fiftyTwoWeekLow': 164.08,
            'marketCap': 2.9e12,
            'sector': 'Technology',
            'industry': 'Consumer Electronics',
        })

        quote = fetch_quote('AAPL')

        assert quote.symbol == 'AAPL'
        assert quote.price == 187.11
        assert quote.change_percent == 0.64
        assert quote.fifty_two_week_high == 199.62
        assert quote.sector == 'Technology'
        assert quote.trailing_pe == 0.0

    @patch('ingestion.providers.yfinance_adapter.yf.Ticker')
    def test_fund_without_profile_has_blank_sector(self, mock_ticker):
        mock_ticker.return_value = Mock(info={'currentPrice': 512.3})

        quote = fetch_quote('VOO')

        assert quote.price == 512.3
        assert quote.sector == ''
        assert quote.industry == ''

    @patch('ingestion.providers.yfinance_adapter.yf.Ticker')
    def test_missing_price_raises(self, mock_ticker):
        mock_ticker.return_value = Mock(info={'sector': 'Technology'})

        with pytest.raises(YFinanceError, match="No price"):
            fetch_quote('AAPL')


class TestFetchQuotes:
    """Tests for batched quote fetching."""

    @patch('ingestion.providers.yfinance_adapter.time.sleep')
    @patch('ingestion.providers.yfinance_adapter.fetch_quote')
    def test_failed_symbols_are_omitted(self, mock_fetch_quote, mock_sleep):
        """One failing symbol does not abort the batch."""
        def fake_quote(ticker):
            if ticker == 'BAD':
                raise YFinanceError("No price in quote for BAD")
            return QuoteSnapshot(symbol=ticker, price=100.0)

        mock_fetch_quote.side_effect = fake_quote

        quotes = fetch_quotes(['AAPL', 'BAD', 'MSFT'], batch_size=5)

        assert set(quotes) == {'AAPL', 'MSFT'}
        mock_sleep.assert_not_called()

    @patch('ingestion.providers.yfinance_adapter.time.sleep')
    @patch('ingestion.providers.yfinance_adapter.fetch_quote')
    def test_batches_are_separated_by_delay(self, mock_fetch_quote, mock_sleep):
        mock_fetch_quote.side_effect = lambda ticker: QuoteSnapshot(symbol=ticker, price=1.0)

        quotes = fetch_quotes(['A', 'B', 'C', 'A'], batch_size=2, delay_seconds=0.25)

        assert list(quotes) == ['A', 'B', 'C']
        assert mock_fetch_quote.call_count == 3
        mock_sleep.assert_called_once_with(0.25)

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            fetch_quotes(['AAPL'], batch_size=0)


class TestValidateTicker:

    def test_valid_tickers(self):
        for ticker in ['AAPL', 'BRK.B', '^GSPC', 'BTC-USD', 'ES=F']:
            _validate_ticker(ticker)

    def test_invalid_tickers(self):
        with pytest.raises(YFinanceError, match="non-empty"):
            _validate_ticker('')
        with pytest.raises(YFinanceError, match="too long"):
            _validate_ticker('ABCDEFGHIJK')
        with pytest.raises(YFinanceError, match="invalid characters"):
            _validate_ticker('AA PL')
