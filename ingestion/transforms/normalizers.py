"""
Normalizers for transforming provider price data to canonical bars.
Pure functions - no IO, network, or side effects.
Minimal normalization - only when necessary.
"""

from datetime import date, datetime
from typing import Dict, Any, Iterable, List, Union

from ingestion.models import OhlcvBar


class BarNormalizationError(ValueError):
    """Raised when a price row has no usable date."""
    pass


def normalize_bars(raw_rows: Iterable[Dict[str, Any]]) -> List[OhlcvBar]:
    """
    Transform provider-native price rows to canonical bars.

    Minimal normalization:
    - Date strings to date objects (indicator code sorts by date)
    - Field name mapping (provider uses capitalized names, stores use lower)
    - Rows without a close are dropped (provider gaps)
    - Deduplication by date (keep last to handle corrections)
    - Ascending date order

    Args:
        raw_rows: Price dictionaries keyed either provider-style
                  ('Date', 'Open', ...) or store-style ('date', 'open', ...)

    Returns:
        List of bars sorted ascending by date, one per date

    Raises:
        BarNormalizationError: If a row has a missing or unparseable date
    """
    by_date: Dict[date, OhlcvBar] = {}

    for raw in raw_rows:
        close = _field(raw, 'close')
        if close is None:
            continue

        row_date = _parse_date(_field(raw, 'date'))
        by_date[row_date] = OhlcvBar(
            date=row_date,
            open=float(_field(raw, 'open') or 0),
            high=float(_field(raw, 'high') or 0),
            low=float(_field(raw, 'low') or 0),
            close=float(close),
            volume=int(_field(raw, 'volume') or 0),
        )

    return [by_date[d] for d in sorted(by_date)]


def sort_bars(bars: Iterable[OhlcvBar]) -> List[OhlcvBar]:
    """Return bars in ascending date order without mutating the input."""
    return sorted(bars, key=lambda bar: bar.date)


def _field(raw: Dict[str, Any], name: str) -> Any:
    # Provider rows capitalize field names; database rows do not
    if name in raw:
        return raw[name]
    return raw.get(name.capitalize())


def _parse_date(value: Union[str, date, datetime, None]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError as e:
            raise BarNormalizationError(f"Unparseable bar date: {value!r}") from e
    raise BarNormalizationError(f"Missing bar date: {value!r}")
