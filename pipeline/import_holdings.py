"""
Holdings import pipeline - brokerage CSV into the holdings store.
Composes: Parse → Validate → Replace → Enrich → Track.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from ingestion.models import Holding, QuoteSnapshot
from ingestion.transforms.holdings_parser import parse_holdings
from ingestion.transforms.validators import validate_holding, ValidationError
from storage.loaders import EnrichOnly, apply_holding_update, replace_holdings
from storage.run_registry import (
    PIPELINE_HOLDINGS_IMPORT,
    RunStatus,
    finish_run,
    start_run,
)


logger = logging.getLogger(__name__)

NO_HOLDINGS_MESSAGE = 'No holdings found in CSV'

QuoteFetcher = Callable[[List[str]], Dict[str, QuoteSnapshot]]


class PipelineError(Exception):
    """Raised when pipeline execution fails."""
    pass


def run_holdings_import(
    csv_bytes: Union[bytes, str],
    conn: sqlite3.Connection,
    quote_fetcher: Optional[QuoteFetcher] = None
) -> Dict[str, Any]:
    """
    Run the complete holdings import pipeline.

    Pipeline stages:
    1. Start run tracking
    2. Parse the CSV (dialect auto-detected)
    3. Validate each holding
    4. Replace stored holdings with the valid ones
    5. Enrich price/sector/industry from quotes (when a fetcher is given)
    6. Finish run tracking with row counts

    An empty parse leaves stored holdings untouched and fails the run with
    'No holdings found in CSV'.

    Args:
        csv_bytes: Raw CSV export
        conn: SQLite database connection
        quote_fetcher: Callable mapping symbols to QuoteSnapshot, e.g. fetch_quotes

    Returns:
        Dictionary with run results and counts

    Raises:
        PipelineError: If no CSV content is given
    """
    if csv_bytes is None:
        raise PipelineError("No CSV content provided")

    run_id = start_run(conn, PIPELINE_HOLDINGS_IMPORT)
    start_time = datetime.now()

    result = {
        'run_id': run_id,
        'status': 'running',
        'rows_parsed': 0,
        'rows_stored': 0,
        'validation_warnings': 0,
        'symbols_enriched': 0,
        'error_message': None
    }

    try:
        holdings = parse_holdings(csv_bytes)
        result['rows_parsed'] = len(holdings)

        if not holdings:
            return _finish(conn, result, start_time, RunStatus.FAILED, NO_HOLDINGS_MESSAGE)

        valid_holdings = _validate_all(holdings, result)
        if not valid_holdings:
            error_msg = f"All {len(holdings)} holdings failed validation"
            return _finish(conn, result, start_time, RunStatus.FAILED, error_msg)

        result['rows_stored'] = replace_holdings(conn, valid_holdings)
        logger.info("Stored %d holdings (run %d)", result['rows_stored'], run_id)

        if quote_fetcher is not None:
            symbols = list(dict.fromkeys(h.symbol for h in valid_holdings))
            result['symbols_enriched'] = enrich_holdings(conn, symbols, quote_fetcher)

        return _finish(conn, result, start_time, RunStatus.COMPLETED)

    except Exception as e:
        logger.exception("Holdings import failed (run %d)", run_id)
        return _finish(conn, result, start_time, RunStatus.FAILED, str(e))


def enrich_holdings(
    conn: sqlite3.Connection,
    symbols: List[str],
    quote_fetcher: QuoteFetcher
) -> int:
    """
    Apply EnrichOnly updates for every symbol with a quote.

    A fetcher failure is logged and leaves holdings as imported.

    Returns:
        Number of symbols enriched
    """
    try:
        quotes = quote_fetcher(symbols)
    except Exception as e:
        logger.warning("Quote enrichment skipped: %s", e)
        return 0

    enriched = 0
    for symbol in symbols:
        quote = quotes.get(symbol)
        if quote is None or quote.price <= 0:
            continue

        update = EnrichOnly(
            symbol=symbol,
            current_price=quote.price,
            sector=quote.sector,
            industry=quote.industry,
        )
        if apply_holding_update(conn, update, commit=False):
            enriched += 1

    conn.commit()
    logger.info("Enriched %d of %d symbols", enriched, len(symbols))
    return enriched


def _validate_all(holdings: List[Holding], result: Dict[str, Any]) -> List[Holding]:
    valid = []
    for holding in holdings:
        try:
            validate_holding(holding)
            valid.append(holding)
        except ValidationError as e:
            result['validation_warnings'] += 1
            logger.warning("Validation warning for %s: %s", holding.symbol, e)
    return valid


def _finish(
    conn: sqlite3.Connection,
    result: Dict[str, Any],
    start_time: datetime,
    status: RunStatus,
    error_message: Optional[str] = None
) -> Dict[str, Any]:
    finish_run(
        conn=conn,
        run_id=result['run_id'],
        status=status,
        finished_at=datetime.now(),
        rows_in=result['rows_parsed'],
        rows_out=result['rows_stored'],
        error_message=error_message
    )

    result['status'] = status.value
    result['error_message'] = error_message
    result['duration_seconds'] = (datetime.now() - start_time).total_seconds()
    return result
