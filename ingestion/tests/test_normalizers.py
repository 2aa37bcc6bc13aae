"""
Tests for bar normalizers - provider rows to sorted canonical bars.
"""

import pytest
from datetime import date, datetime

from ingestion.models import OhlcvBar
from ingestion.transforms.normalizers import (
    normalize_bars,
    sort_bars,
    BarNormalizationError
)


class TestNormalizeBars:
    """Tests for normalize_bars function."""

    def test_provider_rows(self):
        """Capitalized provider keys map to canonical bars."""
        raw = [
            {'Date': '2024-01-16', 'Open': 186.10, 'High': 187.45, 'Low': 185.80,
             'Close': 187.11, 'Volume': 58414500},
            {'Date': '2024-01-15', 'Open': 185.25, 'High': 186.80, 'Low': 184.50,
             'Close': 185.92, 'Volume': 65284300},
        ]

        bars = normalize_bars(raw)

        assert [b.date for b in bars] == [date(2024, 1, 15), date(2024, 1, 16)]
        assert bars[0] == OhlcvBar(date(2024, 1, 15), 185.25, 186.80, 184.50, 185.92, 65284300)

    def test_store_rows(self):
        """Lowercase store keys are accepted too."""
        raw = [{'date': '2024-01-15', 'open': 1, 'high': 2, 'low': 0.5,
                'close': 1.5, 'volume': 10}]

        bars = normalize_bars(raw)

        assert bars[0].close == 1.5
        assert isinstance(bars[0].volume, int)

    def test_duplicate_dates_keep_last(self):
        raw = [
            {'Date': '2024-01-15', 'Close': 100.0},
            {'Date': '2024-01-15', 'Close': 101.0},
        ]

        bars = normalize_bars(raw)

        assert len(bars) == 1
        assert bars[0].close == 101.0

    def test_rows_without_close_dropped(self):
        raw = [
            {'Date': '2024-01-15', 'Open': 100.0},
            {'Date': '2024-01-16', 'Close': 101.0},
        ]

        assert [b.date for b in normalize_bars(raw)] == [date(2024, 1, 16)]

    def test_date_types(self):
        raw = [
            {'Date': datetime(2024, 1, 15, 16, 0), 'Close': 1.0},
            {'Date': date(2024, 1, 16), 'Close': 2.0},
            {'Date': '2024-01-17T00:00:00', 'Close': 3.0},
        ]

        dates = [b.date for b in normalize_bars(raw)]

        assert dates == [date(2024, 1, 15), date(2024, 1, 16), date(2024, 1, 17)]

    def test_bad_dates_raise(self):
        with pytest.raises(BarNormalizationError, match="Unparseable"):
            normalize_bars([{'Date': 'yesterday', 'Close': 1.0}])
        with pytest.raises(BarNormalizationError, match="Missing"):
            normalize_bars([{'Close': 1.0}])

    def test_empty_input(self):
        assert normalize_bars([]) == []


class TestSortBars:

    def test_sorts_without_mutating(self):
        bars = [
            OhlcvBar(date(2024, 1, 16), 1, 1, 1, 1, 0),
            OhlcvBar(date(2024, 1, 15), 1, 1, 1, 1, 0),
        ]

        ordered = sort_bars(bars)

        assert [b.date for b in ordered] == [date(2024, 1, 15), date(2024, 1, 16)]
        assert bars[0].date == date(2024, 1, 16)
