"""
Holdings parser for brokerage CSV exports.
Pure functions - no IO, network, or side effects.

Two export dialects are supported and auto-detected from the header line:

- Brokerage (dialect A): account-oriented positions export. May carry
  disclaimer banner lines above the header and groups rows under an account
  value that is only written on the first row of each group.
- Extended (dialect B): dividend/tax-rich tracker export. Stores several
  metrics as duplicate column names (dollar column, then percent column).
"""

import io
import warnings
from functools import reduce
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import pandas as pd

from ingestion.models import Holding
from ingestion.transforms.cleaners import clean_number, clean_text, is_blank


DIALECT_BROKERAGE = 'brokerage'
DIALECT_EXTENDED = 'extended'

# All three must appear on the first line for the extended dialect
EXTENDED_HEADER_MARKERS = ('Holding', "Holdings' name", 'Share price')

# Header line of the brokerage dialect starts with one of these
ACCOUNT_HEADER_TOKENS = ('Account Name', 'Account Number')

# Money-market sweep positions; prefix match catches "SPAXX**"
CASH_SWEEP_SYMBOLS = ('SPAXX', 'FCASH', 'FDRXX', 'FZFXX')

# Subtotal / footer rows carry these in the symbol column
FOOTER_MARKERS = ('PENDING', 'TOTAL')

INDEX_FUND_BRANDS = ('etf', 'ishares', 'vanguard', 'spdr', 'invesco')

# Ordered: first match wins
ACCOUNT_TYPE_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (('roth ira',), 'Roth IRA'),
    (('traditional ira', 'rollover ira', 'rollover'), 'Traditional IRA'),
    (('401k', '401(k)'), '401(k)'),
    (('individual', 'brokerage'), 'Individual'),
    (('hsa',), 'HSA'),
    (('529',), '529'),
    (('tiaa', 'combined'), 'TIAA'),
    (('ira',), 'IRA'),
)


class HoldingsParseError(ValueError):
    """Raised when the CSV cannot be tokenized at all."""
    pass


def parse_holdings(csv_bytes: Union[bytes, str]) -> List[Holding]:
    """
    Parse a brokerage CSV export into canonical holdings.

    The dialect is detected from header content only. Malformed numeric cells
    degrade to 0; rows without a symbol or with non-positive quantity are
    skipped silently.

    Args:
        csv_bytes: Raw file content (UTF-8, BOM allowed)

    Returns:
        List of holdings, each with quantity > 0 and a non-empty uppercase
        symbol. Empty when no valid rows remain.

    Raises:
        HoldingsParseError: If the content cannot be tokenized as CSV
    """
    text = decode_csv(csv_bytes)
    if not text.strip():
        return []

    if detect_dialect(text) == DIALECT_EXTENDED:
        return _parse_extended(text)
    return _parse_brokerage(text)


def decode_csv(csv_bytes: Union[bytes, str]) -> str:
    """Decode to text and strip a leading byte-order mark."""
    if isinstance(csv_bytes, bytes):
        text = csv_bytes.decode('utf-8', errors='replace')
    else:
        text = csv_bytes
    return text.lstrip('\ufeff')


def detect_dialect(text: str) -> str:
    """
    Detect export dialect from the first line.

    Args:
        text: Decoded CSV content (BOM already stripped)

    Returns:
        DIALECT_EXTENDED or DIALECT_BROKERAGE
    """
    first_line = text.split('\n', 1)[0]
    if all(marker in first_line for marker in EXTENDED_HEADER_MARKERS):
        return DIALECT_EXTENDED
    return DIALECT_BROKERAGE


def normalize_account_type(account: str) -> str:
    """
    Map a free-form account label to a normalized account type.

    Examples:
        "ROTH IRA 123456789" -> "Roth IRA"
        "Rollover IRA"       -> "Traditional IRA"
        "Joint WROS"         -> "Joint WROS"
        ""                   -> "Unknown"
    """
    raw = clean_text(account)
    lower = raw.lower()

    for needles, account_type in ACCOUNT_TYPE_RULES:
        if any(needle in lower for needle in needles):
            return account_type

    return raw if raw else 'Unknown'


def infer_asset_type(expense_ratio: float, sector: str, name: str) -> str:
    """
    Classify a holding as Stock, ETF or Mutual Fund from export hints.

    A positive expense ratio means a fund: ETF when the name carries an
    index-fund brand, otherwise Mutual Fund. Without one, a sector implies a
    single stock.
    """
    sector = clean_text(sector).lower()
    name = clean_text(name).lower()

    if expense_ratio > 0:
        if any(brand in name for brand in INDEX_FUND_BRANDS):
            return 'ETF'
        return 'Mutual Fund'

    if sector and sector != 'n/a':
        return 'Stock'

    if 'etf' in name or 'index' in name:
        return 'ETF'

    return 'Stock'


def _read_rows(text: str) -> List[List[str]]:
    """
    Tokenize CSV text into rows of strings, header row first.

    Columns are kept positional so duplicate header names survive. Rows wider
    than the header are truncated; shorter rows are padded with ''.
    """
    first_line = text.split('\n', 1)[0]
    read_options = dict(
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        index_col=False,
        engine='python',
    )

    try:
        with warnings.catch_warnings():
            # Over-wide rows are truncated on purpose
            warnings.simplefilter('ignore', pd.errors.ParserWarning)
            width = pd.read_csv(io.StringIO(first_line), **read_options).shape[1]
            frame = pd.read_csv(
                io.StringIO(text),
                on_bad_lines=lambda fields: fields[:width],
                **read_options,
            )
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as e:
        raise HoldingsParseError(f"Unable to tokenize CSV: {e}") from e

    frame = frame.fillna('')
    return [[str(value) for value in row] for row in frame.values.tolist()]


def _cell(row: Sequence[str], index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ''
    return row[index]


def _column_index(header: Sequence[str], *names: str) -> Optional[int]:
    """Index of the first header matching any of names, in names order."""
    for name in names:
        if name in header:
            return list(header).index(name)
    return None


def _column_positions(header: Sequence[str]) -> Dict[str, List[int]]:
    """Map each header name to every position it occupies."""
    positions: Dict[str, List[int]] = {}
    for index, name in enumerate(header):
        positions.setdefault(name, []).append(index)
    return positions


def _is_skipped_symbol(symbol: str) -> bool:
    if not symbol or symbol == 'SYMBOL':
        return True
    if any(marker in symbol for marker in FOOTER_MARKERS):
        return True
    return symbol.startswith(CASH_SWEEP_SYMBOLS)


def _gain_loss(
    gain_cell: str,
    percent_cell: str,
    market_value: float,
    total_cost_basis: float
) -> Tuple[float, float]:
    """Reported gain/loss, or derived from value and cost when blank."""
    if is_blank(gain_cell):
        gain = market_value - total_cost_basis
    else:
        gain = clean_number(gain_cell)

    if is_blank(percent_cell):
        percent = (gain / total_cost_basis * 100) if total_cost_basis else 0.0
    else:
        percent = clean_number(percent_cell)

    return gain, percent


# --- Brokerage dialect -------------------------------------------------------

class _BrokerageColumns(NamedTuple):
    account: Optional[int]
    symbol: Optional[int]
    description: Optional[int]
    quantity: Optional[int]
    last_price: Optional[int]
    current_value: Optional[int]
    gain_dollar: Optional[int]
    gain_percent: Optional[int]
    cost_per_share: Optional[int]
    cost_total: Optional[int]


class _AccountFold(NamedTuple):
    """Accumulator for the row fold: account carried forward + results."""
    account: str
    holdings: Tuple[Holding, ...]


def _find_header_line(lines: Sequence[str]) -> int:
    for index, line in enumerate(lines):
        stripped = line.strip().lstrip('"')
        if stripped.startswith(ACCOUNT_HEADER_TOKENS):
            return index
    return 0


def _parse_brokerage(text: str) -> List[Holding]:
    lines = text.split('\n')
    header_index = _find_header_line(lines)
    rows = _read_rows('\n'.join(lines[header_index:]))
    if not rows:
        return []

    header = [clean_text(name) for name in rows[0]]
    columns = _BrokerageColumns(
        account=_column_index(header, 'Account Name/Number', 'Account Name', 'Account Number'),
        symbol=_column_index(header, 'Symbol'),
        description=_column_index(header, 'Description'),
        quantity=_column_index(header, 'Quantity'),
        last_price=_column_index(header, 'Last Price'),
        current_value=_column_index(header, 'Current Value'),
        gain_dollar=_column_index(header, 'Total Gain/Loss Dollar'),
        gain_percent=_column_index(header, 'Total Gain/Loss Percent'),
        cost_per_share=_column_index(header, 'Cost Basis Per Share', 'Average Cost Basis'),
        cost_total=_column_index(header, 'Cost Basis Total'),
    )

    def step(state: _AccountFold, row: List[str]) -> _AccountFold:
        account = clean_text(_cell(row, columns.account)) or state.account
        holding = _brokerage_holding(row, columns, account)
        if holding is None:
            return _AccountFold(account, state.holdings)
        return _AccountFold(account, state.holdings + (holding,))

    result = reduce(step, rows[1:], _AccountFold('', ()))
    return list(result.holdings)


def _brokerage_holding(
    row: List[str],
    columns: _BrokerageColumns,
    account: str
) -> Optional[Holding]:
    symbol = clean_text(_cell(row, columns.symbol)).upper()
    if _is_skipped_symbol(symbol):
        return None

    quantity = clean_number(_cell(row, columns.quantity))
    if quantity <= 0:
        return None

    cost_per_share = clean_number(_cell(row, columns.cost_per_share))
    total_cost = clean_number(_cell(row, columns.cost_total))
    price = clean_number(_cell(row, columns.last_price))
    market_value = clean_number(_cell(row, columns.current_value)) or price * quantity

    if not total_cost:
        total_cost = cost_per_share * quantity
    if not cost_per_share:
        cost_per_share = total_cost / quantity

    gain, gain_percent = _gain_loss(
        _cell(row, columns.gain_dollar),
        _cell(row, columns.gain_percent),
        market_value,
        total_cost
    )

    return Holding(
        symbol=symbol,
        description=clean_text(_cell(row, columns.description)),
        quantity=quantity,
        cost_basis=cost_per_share,
        total_cost_basis=total_cost,
        current_price=price,
        market_value=market_value,
        gain_loss=gain,
        gain_loss_percent=gain_percent,
        account_type=normalize_account_type(account),
        sector='',
    )


# --- Extended dialect --------------------------------------------------------

def _parse_extended(text: str) -> List[Holding]:
    rows = _read_rows(text)
    if not rows:
        return []

    positions = _column_positions([clean_text(name) for name in rows[0]])
    holdings = []

    for row in rows[1:]:
        holding = _extended_holding(row, positions)
        if holding is not None:
            holdings.append(holding)

    return holdings


def _extended_holding(row: List[str], positions: Dict[str, List[int]]) -> Optional[Holding]:
    def first(name: str) -> str:
        found = positions.get(name, [])
        return _cell(row, found[0]) if found else ''

    def second(name: str) -> str:
        # Duplicate header: second occurrence holds the percent value
        found = positions.get(name, [])
        return _cell(row, found[1]) if len(found) > 1 else ''

    symbol = clean_text(first('Holding')).upper()
    if not symbol:
        return None

    quantity = clean_number(first('Shares'))
    if quantity <= 0:
        return None

    name = clean_text(first("Holdings' name"))
    sector = clean_text(first('Sector'))
    price = clean_number(first('Share price'))
    total_cost = clean_number(first('Cost basis'))
    market_value = clean_number(first('Current value')) or price * quantity
    expense_ratio = clean_number(first('Expense ratio'))

    gain, gain_percent = _gain_loss(
        first('Capital gain'),
        second('Capital gain'),
        market_value,
        total_cost
    )

    return Holding(
        symbol=symbol,
        description=name,
        quantity=quantity,
        cost_basis=total_cost / quantity,
        total_cost_basis=total_cost,
        current_price=price,
        market_value=market_value,
        gain_loss=gain,
        gain_loss_percent=gain_percent,
        account_type=normalize_account_type(first('Portfolios')),
        sector=sector,
        country=clean_text(first('Country')),
        currency=clean_text(first('Currency')),
        pe_ratio=clean_number(first('PE')),
        eps=clean_number(first('EPS')),
        beta=clean_number(first('Beta')),
        expense_ratio=expense_ratio,
        dividend_yield=clean_number(first('Dividend yield')),
        dividend_yield_on_cost=clean_number(first('Dividend yield on cost')),
        dividends_per_share=clean_number(first('Dividends per share')),
        dividends_received=clean_number(first('Dividends received')),
        dividend_growth_5y=clean_number(first('Dividend growth (5Y)')),
        next_payment_date=clean_text(first('Next payment date')),
        next_payment_amount=clean_number(first('Next payment amount')),
        ex_dividend_date=clean_text(first('Ex-dividend date')),
        daily_change_dollar=clean_number(first('Daily change')),
        daily_change_percent=clean_number(second('Daily change')),
        irr=clean_number(first('IRR')),
        realized_pnl=clean_number(first('Realized P&L')),
        total_profit=clean_number(first('Total profit')),
        total_profit_percent=clean_number(second('Total profit')),
        tax=clean_number(first('Tax')),
        portfolio_share_percent=clean_number(first("Holding's share")),
        target_share_percent=clean_number(first('Target share')),
        category=clean_text(first('Category')),
        isin=clean_text(first('ISIN')),
        asset_type=infer_asset_type(expense_ratio, sector, name),
    )
