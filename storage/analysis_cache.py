"""
Analysis cache - latest (technicals, risk, momentum) triple per symbol.
Rows are overwritten wholesale on recomputation; readers never mutate them.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from analysis.models import MomentumScore, RiskMetrics, TechnicalSignals


@dataclass(frozen=True)
class AnalysisCacheEntry:
    symbol: str
    technicals: TechnicalSignals
    risk: RiskMetrics
    momentum: MomentumScore
    last_updated: datetime


_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


@contextmanager
def symbol_lock(symbol: str) -> Iterator[None]:
    """
    Per-symbol mutual exclusion for cache writers in this process.

    Two writers for the same symbol run one after the other; writers for
    different symbols do not block each other.
    """
    with _locks_guard:
        lock = _locks.setdefault(symbol, threading.Lock())

    with lock:
        yield


def upsert_analysis_cache(
    conn: sqlite3.Connection,
    symbol: str,
    technicals: TechnicalSignals,
    risk: RiskMetrics,
    momentum: MomentumScore,
    last_updated: Optional[datetime] = None
) -> None:
    """
    Overwrite the cached analysis for a symbol.

    Args:
        conn: SQLite connection
        symbol: Ticker
        technicals: Indicator engine output
        risk: Risk engine output
        momentum: Momentum model output
        last_updated: Computation timestamp (defaults to now)
    """
    if last_updated is None:
        last_updated = datetime.now()

    conn.execute("""
        INSERT INTO analysis_cache (
            symbol, technical_signals, risk_metrics, momentum_score, last_updated
        ) VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(symbol) DO UPDATE SET
            technical_signals = excluded.technical_signals,
            risk_metrics = excluded.risk_metrics,
            momentum_score = excluded.momentum_score,
            last_updated = excluded.last_updated
    """, (
        symbol,
        json.dumps(technicals.to_dict()),
        json.dumps(risk.to_dict()),
        json.dumps(momentum.to_dict()),
        last_updated.isoformat(sep=' '),
    ))
    conn.commit()


def get_analysis_cache(conn: sqlite3.Connection, symbol: str) -> Optional[AnalysisCacheEntry]:
    """
    Get the cached analysis for a symbol.

    Returns:
        AnalysisCacheEntry, or None if the symbol has never been analyzed
    """
    cursor = conn.execute("""
        SELECT symbol, technical_signals, risk_metrics, momentum_score, last_updated
        FROM analysis_cache
        WHERE symbol = ?
    """, (symbol,))

    row = cursor.fetchone()
    if row is None:
        return None
    return _row_to_entry(row)


def list_analysis_cache(conn: sqlite3.Connection) -> List[AnalysisCacheEntry]:
    """Get every cached analysis, ordered by symbol."""
    cursor = conn.execute("""
        SELECT symbol, technical_signals, risk_metrics, momentum_score, last_updated
        FROM analysis_cache
        ORDER BY symbol
    """)
    return [_row_to_entry(row) for row in cursor.fetchall()]


def delete_analysis_cache(conn: sqlite3.Connection, symbol: str) -> bool:
    """
    Remove the cached analysis for a symbol.

    Returns:
        True if a row was deleted
    """
    cursor = conn.execute("DELETE FROM analysis_cache WHERE symbol = ?", (symbol,))
    conn.commit()
    return cursor.rowcount > 0


def _row_to_entry(row) -> AnalysisCacheEntry:
    return AnalysisCacheEntry(
        symbol=row[0],
        technicals=TechnicalSignals.from_dict(json.loads(row[1])),
        risk=RiskMetrics.from_dict(json.loads(row[2])),
        momentum=MomentumScore.from_dict(json.loads(row[3])),
        last_updated=datetime.fromisoformat(row[4].replace(' ', 'T')),
    )
