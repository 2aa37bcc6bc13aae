"""
Database loaders - schema and idempotent write paths for SQLite.
Thin IO layer with focus on data integrity and idempotence.
"""

import os
import sqlite3
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple, Union

from ingestion.models import Holding, OhlcvBar
from ingestion.transforms.normalizers import normalize_bars


DEFAULT_DB_PATH = './data/portfolio.db'

# Holding field types map to SQLite column types; Optional[float] is REAL
_TEXT_FIELDS = {
    'symbol', 'description', 'account_type', 'sector', 'industry', 'country',
    'currency', 'next_payment_date', 'ex_dividend_date', 'category', 'isin',
    'asset_type'
}

HOLDING_COLUMNS = [f.name for f in fields(Holding)]


@dataclass(frozen=True)
class FullUpsert:
    """Write every column of a holding, keyed by (symbol, account_type)."""
    holding: Holding


@dataclass(frozen=True)
class EnrichOnly:
    """Refresh quote-derived fields of every account row for a symbol."""
    symbol: str
    current_price: float
    sector: str = ''
    industry: str = ''


HoldingUpdate = Union[FullUpsert, EnrichOnly]


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with required tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    conn.execute("PRAGMA foreign_keys = ON")

    holding_columns = ',\n'.join(
        f"{name} {'TEXT' if name in _TEXT_FIELDS else 'REAL'}"
        + (' NOT NULL' if name in ('symbol', 'account_type', 'quantity') else '')
        for name in HOLDING_COLUMNS
    )

    # Create holdings table
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS holdings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            {holding_columns},
            last_updated DATETIME,
            UNIQUE(symbol, account_type)
        )
    """)

    # Create market_data table
    conn.execute("""
        CREATE TABLE IF NOT EXISTS market_data (
            symbol TEXT NOT NULL,
            date DATE NOT NULL,
            open REAL NOT NULL,
            high REAL NOT NULL,
            low REAL NOT NULL,
            close REAL NOT NULL,
            volume INTEGER NOT NULL,
            ingested_at DATETIME NOT NULL,
            PRIMARY KEY (symbol, date)
        )
    """)

    # Create analysis_cache table
    conn.execute("""
        CREATE TABLE IF NOT EXISTS analysis_cache (
            symbol TEXT PRIMARY KEY,
            technical_signals TEXT NOT NULL,
            risk_metrics TEXT NOT NULL,
            momentum_score TEXT NOT NULL,
            last_updated DATETIME NOT NULL
        )
    """)

    # Create runs table
    conn.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            pipeline_name TEXT NOT NULL,
            started_at DATETIME NOT NULL,
            finished_at DATETIME,
            status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
            rows_in INTEGER,
            rows_out INTEGER,
            error_message TEXT
        )
    """)

    # Create indices for performance
    conn.execute("CREATE INDEX IF NOT EXISTS idx_holdings_symbol ON holdings(symbol)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_market_data_symbol ON market_data(symbol)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")

    conn.commit()


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.
    Creates the parent directory when missing.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    parent = os.path.dirname(db_path)
    if parent and db_path != ':memory:':
        os.makedirs(parent, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")  # Better concurrency
    return conn


def apply_holding_update(
    conn: sqlite3.Connection,
    update: HoldingUpdate,
    commit: bool = True
) -> int:
    """
    Apply one holding write.

    FullUpsert inserts or replaces every column for (symbol, account_type).
    EnrichOnly touches current_price, sector and industry on every account
    row of the symbol; blank sector/industry keep the stored values and
    quantity/cost basis are never modified.

    Args:
        conn: SQLite connection
        update: FullUpsert or EnrichOnly
        commit: Commit after the write

    Returns:
        Number of rows written
    """
    if isinstance(update, FullUpsert):
        written = _upsert_holding(conn, update.holding)
    elif isinstance(update, EnrichOnly):
        written = _enrich_holding(conn, update)
    else:
        raise TypeError(f"Unsupported holding update: {type(update).__name__}")

    if commit:
        conn.commit()
    return written


def _upsert_holding(conn: sqlite3.Connection, holding: Holding) -> int:
    values = holding.to_dict()
    now = _timestamp()

    # Check if row exists (by natural key)
    cursor = conn.execute(
        "SELECT COUNT(*) FROM holdings WHERE symbol = ? AND account_type = ?",
        (holding.symbol, holding.account_type)
    )
    exists = cursor.fetchone()[0] > 0

    if exists:
        assignments = ', '.join(f"{name} = ?" for name in HOLDING_COLUMNS)
        conn.execute(
            f"UPDATE holdings SET {assignments}, last_updated = ? "
            "WHERE symbol = ? AND account_type = ?",
            [values[name] for name in HOLDING_COLUMNS] + [now, holding.symbol, holding.account_type]
        )
    else:
        placeholders = ', '.join('?' for _ in HOLDING_COLUMNS)
        conn.execute(
            f"INSERT INTO holdings ({', '.join(HOLDING_COLUMNS)}, last_updated) "
            f"VALUES ({placeholders}, ?)",
            [values[name] for name in HOLDING_COLUMNS] + [now]
        )
    return 1


def _enrich_holding(conn: sqlite3.Connection, update: EnrichOnly) -> int:
    cursor = conn.execute("""
        UPDATE holdings SET
            current_price = ?,
            sector = CASE WHEN ? != '' THEN ? ELSE sector END,
            industry = CASE WHEN ? != '' THEN ? ELSE industry END,
            last_updated = ?
        WHERE symbol = ?
    """, (
        update.current_price,
        update.sector, update.sector,
        update.industry, update.industry,
        _timestamp(), update.symbol
    ))
    return cursor.rowcount


def replace_holdings(conn: sqlite3.Connection, holdings: List[Holding]) -> int:
    """
    Replace all stored holdings with a fresh import.
    Clear and reinsert run in one transaction.

    Args:
        conn: SQLite connection
        holdings: Parsed holdings

    Returns:
        Number of holdings written
    """
    try:
        conn.execute("DELETE FROM holdings")
        for holding in holdings:
            apply_holding_update(conn, FullUpsert(holding), commit=False)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise

    return len(holdings)


def clear_holdings(conn: sqlite3.Connection) -> None:
    conn.execute("DELETE FROM holdings")
    conn.commit()


def get_all_holdings(conn: sqlite3.Connection) -> List[Holding]:
    """
    Get all stored holdings, largest market value first.

    Args:
        conn: SQLite connection

    Returns:
        List of Holding
    """
    cursor = conn.execute(
        f"SELECT {', '.join(HOLDING_COLUMNS)} FROM holdings "
        "ORDER BY market_value DESC, symbol, account_type"
    )
    return [_row_to_holding(row) for row in cursor.fetchall()]


def get_holdings_by_symbol(conn: sqlite3.Connection, symbol: str) -> List[Holding]:
    """Get every account row held for a symbol."""
    cursor = conn.execute(
        f"SELECT {', '.join(HOLDING_COLUMNS)} FROM holdings "
        "WHERE symbol = ? ORDER BY account_type",
        (symbol.upper(),)
    )
    return [_row_to_holding(row) for row in cursor.fetchall()]


def upsert_market_data(
    conn: sqlite3.Connection,
    symbol: str,
    bars: List[OhlcvBar]
) -> Tuple[int, int]:
    """
    Upsert daily bars for a symbol.
    Idempotent - can be called multiple times with same data.

    Args:
        conn: SQLite connection
        symbol: Ticker
        bars: Canonical bars

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not bars:
        return (0, 0)

    inserted = 0
    updated = 0
    now = _timestamp()

    for bar in bars:
        day = bar.date.isoformat()

        # Check if row exists (by primary key)
        cursor = conn.execute(
            "SELECT COUNT(*) FROM market_data WHERE symbol = ? AND date = ?",
            (symbol, day)
        )
        exists = cursor.fetchone()[0] > 0

        if exists:
            conn.execute("""
                UPDATE market_data SET
                    open = ?, high = ?, low = ?, close = ?, volume = ?, ingested_at = ?
                WHERE symbol = ? AND date = ?
            """, (bar.open, bar.high, bar.low, bar.close, bar.volume, now, symbol, day))
            updated += 1
        else:
            conn.execute("""
                INSERT INTO market_data (
                    symbol, date, open, high, low, close, volume, ingested_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (symbol, day, bar.open, bar.high, bar.low, bar.close, bar.volume, now))
            inserted += 1

    conn.commit()
    return (inserted, updated)


def get_market_data(
    conn: sqlite3.Connection,
    symbol: str,
    limit: int = 365
) -> List[OhlcvBar]:
    """
    Get the most recent bars for a symbol.

    Args:
        conn: SQLite connection
        symbol: Ticker
        limit: Maximum number of bars

    Returns:
        Up to limit bars, ascending by date
    """
    cursor = conn.execute("""
        SELECT date, open, high, low, close, volume
        FROM market_data
        WHERE symbol = ?
        ORDER BY date DESC
        LIMIT ?
    """, (symbol, limit))

    columns = ['date', 'open', 'high', 'low', 'close', 'volume']
    return normalize_bars(dict(zip(columns, row)) for row in cursor.fetchall())


def _row_to_holding(row: Tuple[Any, ...]) -> Holding:
    values: Dict[str, Any] = dict(zip(HOLDING_COLUMNS, row))
    for name in ('sector', 'industry', 'description'):
        if values[name] is None:
            values[name] = ''
    return Holding.from_dict(values)


def _timestamp(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).isoformat(sep=' ', timespec='seconds')
