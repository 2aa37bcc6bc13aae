"""
Run registry - one row per import or analysis run.
Records lifecycle (running → completed/failed), row counts and the failure
message shown by `cli.py runs`.
"""

import sqlite3
from datetime import datetime
from typing import Dict, Any, List, Optional, Union
from enum import Enum


PIPELINE_HOLDINGS_IMPORT = 'holdings_import'
PIPELINE_PORTFOLIO_ANALYSIS = 'portfolio_analysis'

PIPELINES = (PIPELINE_HOLDINGS_IMPORT, PIPELINE_PORTFOLIO_ANALYSIS)

_RUN_COLUMNS = (
    'run_id', 'pipeline_name', 'started_at', 'finished_at', 'status',
    'rows_in', 'rows_out', 'error_message'
)


class RunStatus(str, Enum):
    """Lifecycle states stored in runs.status."""
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class RunNotFoundError(Exception):
    """Raised when run ID is not found."""
    pass


def start_run(
    conn: sqlite3.Connection,
    pipeline_name: str,
    started_at: Optional[datetime] = None
) -> int:
    """
    Record a new running run.

    Args:
        conn: SQLite connection
        pipeline_name: PIPELINE_HOLDINGS_IMPORT or PIPELINE_PORTFOLIO_ANALYSIS
        started_at: Start timestamp (defaults to now)

    Returns:
        Run ID to pass to finish_run()

    Raises:
        ValueError: If pipeline_name is not a known pipeline
    """
    if pipeline_name not in PIPELINES:
        raise ValueError(f"Unknown pipeline: {pipeline_name}")

    cursor = conn.execute(
        "INSERT INTO runs (pipeline_name, started_at, status) VALUES (?, ?, ?)",
        (pipeline_name, _format(started_at or datetime.now()), RunStatus.RUNNING.value)
    )
    conn.commit()
    return cursor.lastrowid


def finish_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: Union[RunStatus, str],
    finished_at: Optional[datetime] = None,
    rows_in: Optional[int] = None,
    rows_out: Optional[int] = None,
    error_message: Optional[str] = None
) -> None:
    """
    Close a run with its final status.

    For imports rows_in/rows_out are parsed/stored holdings; for analysis
    they are attempted/analyzed symbols.

    Raises:
        ValueError: If status is not a final state
        RunNotFoundError: If run_id doesn't exist
    """
    final = RunStatus(status)
    if final is RunStatus.RUNNING:
        raise ValueError("A run can only finish as completed or failed")

    cursor = conn.execute("""
        UPDATE runs
        SET status = ?, finished_at = ?, rows_in = ?, rows_out = ?, error_message = ?
        WHERE run_id = ?
    """, (
        final.value,
        _format(finished_at or datetime.now()),
        rows_in,
        rows_out,
        error_message,
        run_id
    ))

    if cursor.rowcount == 0:
        conn.rollback()
        raise RunNotFoundError(f"Run ID {run_id} not found")
    conn.commit()


def get_run_status(conn: sqlite3.Connection, run_id: int) -> Dict[str, Any]:
    """
    Get one run with derived duration and drop counts.

    Returns:
        Run dictionary plus 'success_rate' (rows_out / rows_in) and
        'rows_dropped', both None until the run reports counts

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    runs = _select_runs(conn, "WHERE run_id = ?", [run_id])
    if not runs:
        raise RunNotFoundError(f"Run ID {run_id} not found")

    run_info = runs[0]
    rows_in, rows_out = run_info['rows_in'], run_info['rows_out']
    has_counts = bool(rows_in) and rows_out is not None
    run_info['success_rate'] = rows_out / rows_in if has_counts else None
    run_info['rows_dropped'] = rows_in - rows_out if has_counts else None
    return run_info


def list_recent_runs(
    conn: sqlite3.Connection,
    limit: int = 50,
    pipeline_name: Optional[str] = None
) -> List[Dict[str, Any]]:
    """List runs newest first, optionally for one pipeline."""
    if pipeline_name:
        return _select_runs(conn, "WHERE pipeline_name = ?", [pipeline_name], limit)
    return _select_runs(conn, "", [], limit)


def latest_run(
    conn: sqlite3.Connection,
    pipeline_name: str,
    status: Optional[RunStatus] = None
) -> Optional[Dict[str, Any]]:
    """
    Most recent run of a pipeline, optionally restricted to one status.

    Returns:
        Run dictionary, or None if the pipeline never ran
    """
    clause = "WHERE pipeline_name = ?"
    params: List[Any] = [pipeline_name]
    if status is not None:
        clause += " AND status = ?"
        params.append(RunStatus(status).value)

    runs = _select_runs(conn, clause, params, limit=1)
    return runs[0] if runs else None


def _select_runs(
    conn: sqlite3.Connection,
    where: str,
    params: List[Any],
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    query = f"SELECT {', '.join(_RUN_COLUMNS)} FROM runs {where} ORDER BY started_at DESC, run_id DESC"
    if limit is not None:
        query += " LIMIT ?"
        params = params + [limit]
    return [_row_to_run(row) for row in conn.execute(query, params).fetchall()]


def _row_to_run(row) -> Dict[str, Any]:
    run_info = dict(zip(_RUN_COLUMNS, row))
    run_info['started_at'] = _parse(run_info['started_at'])
    run_info['finished_at'] = _parse(run_info['finished_at'])
    run_info['status'] = RunStatus(run_info['status'])

    started, finished = run_info['started_at'], run_info['finished_at']
    run_info['duration_seconds'] = (
        int((finished - started).total_seconds()) if started and finished else None
    )
    return run_info


def _format(moment: datetime) -> str:
    return moment.isoformat(sep=' ')


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value.replace(' ', 'T')) if value else None
