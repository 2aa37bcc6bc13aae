"""
Orchestrated analysis job - holdings store to analysis cache.
Fetches histories in bounded batches, calls pure engines, persists results.
"""

import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from analysis.calculations.momentum import compute_momentum
from analysis.calculations.risk import aggregate_positions, compute_risk_metrics, portfolio_totals
from analysis.calculations.technicals import compute_technicals
from analysis.models import MomentumScore, RiskMetrics, TechnicalSignals
from ingestion.models import OhlcvBar
from ingestion.providers.yfinance_adapter import fetch_history
from ingestion.transforms.normalizers import normalize_bars
from ingestion.transforms.validators import ValidationError, validate_bar
from pipeline.config import AnalysisConfig
from storage.analysis_cache import symbol_lock, upsert_analysis_cache
from storage.loaders import get_all_holdings, get_market_data, upsert_market_data
from storage.run_registry import (
    PIPELINE_PORTFOLIO_ANALYSIS,
    RunStatus,
    finish_run,
    start_run,
)


logger = logging.getLogger(__name__)

NO_HOLDINGS_MESSAGE = 'No holdings to analyze'

HistoryFetcher = Callable[[str, str], List[Dict[str, Any]]]


class AnalysisJobError(Exception):
    """Raised when analysis job fails."""
    pass


def analyze_symbol(
    symbol: str,
    bars: Sequence[OhlcvBar],
    benchmark_bars: Optional[Sequence[OhlcvBar]],
    current_price: float,
    market_value: float,
    total_portfolio_value: float,
    sector_value: float,
    total_sector_value: float,
    purchase_date: Optional[Union[date, str]] = None,
    next_earnings_date: Optional[str] = None
) -> Tuple[TechnicalSignals, RiskMetrics, MomentumScore]:
    """
    Compute the technicals → risk → momentum triple for one symbol.
    Pure - safe to call alone to recompute a single symbol.

    Args:
        symbol: Ticker
        bars: Daily history, any order
        benchmark_bars: Benchmark history for relative strength
        current_price: Quote price; 0 falls back to the last close
        market_value: Position value across accounts
        total_portfolio_value: Sum of all position values
        sector_value: Position value counted toward its sector
        total_sector_value: Sum of position values in the sector
        purchase_date: Lot purchase date for long-term timing
        next_earnings_date: Passed through to RiskMetrics

    Returns:
        Tuple of (TechnicalSignals, RiskMetrics, MomentumScore)

    Raises:
        AnalysisJobError: If there is neither a price nor any history
    """
    if not bars and current_price <= 0:
        raise AnalysisJobError(f"No price data for {symbol}")

    technicals = compute_technicals(symbol, bars, benchmark_bars)

    if current_price <= 0:
        current_price = technicals.current_price

    risk = compute_risk_metrics(
        symbol=symbol,
        current_price=current_price,
        market_value=market_value,
        total_portfolio_value=total_portfolio_value,
        sector_value=sector_value,
        total_sector_value=total_sector_value,
        atr14=technicals.atr14,
        recent_history=bars,
        purchase_date=purchase_date,
        next_earnings_date=next_earnings_date,
    )
    momentum = compute_momentum(technicals)

    return technicals, risk, momentum


def run_portfolio_analysis(
    conn: sqlite3.Connection,
    config: AnalysisConfig,
    history_fetcher: HistoryFetcher = fetch_history,
    purchase_dates: Optional[Dict[str, Union[date, str]]] = None,
    symbols: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Analyze every held symbol (or a selection) and refresh the cache.

    Job stages:
    1. Start run tracking
    2. Aggregate stored holdings per symbol, portfolio and sector totals
    3. Fetch the benchmark, then symbol histories in batches
    4. Per symbol: validate and store bars, compute the triple, overwrite
       the cache row
    5. Finish run tracking

    Histories are fetched concurrently within a batch; every SQLite write
    happens on the calling thread under the symbol's lock. A symbol whose
    fetch fails falls back to stored bars; with none it is recorded as
    failed and the job continues. Bars failing validation are dropped and
    counted in 'validation_warnings'.

    Args:
        conn: SQLite database connection
        config: Analysis settings
        history_fetcher: Callable (symbol, period) -> provider rows
        purchase_dates: Optional purchase date per symbol
        symbols: Restrict analysis to these symbols (totals still cover
                 the whole portfolio)

    Returns:
        Dictionary with status, 'analyzed' and 'failed' counts, per-symbol
        'results' and 'failures'
    """
    run_id = start_run(conn, PIPELINE_PORTFOLIO_ANALYSIS)
    start_time = datetime.now()
    purchase_dates = purchase_dates or {}

    result = {
        'run_id': run_id,
        'status': 'running',
        'analyzed': 0,
        'failed': 0,
        'results': {},
        'failures': {},
        'validation_warnings': 0,
        'error_message': None
    }

    try:
        positions = aggregate_positions(get_all_holdings(conn))
        if not positions:
            return _finish(conn, result, start_time, RunStatus.FAILED, NO_HOLDINGS_MESSAGE)

        total_portfolio_value, sector_totals = portfolio_totals(positions)

        targets = list(positions)
        if symbols:
            requested = list(dict.fromkeys(s.upper() for s in symbols))
            for symbol in requested:
                if symbol not in positions:
                    result['failures'][symbol] = 'Not in holdings'
            targets = [s for s in requested if s in positions]

        benchmark_bars = _benchmark_history(conn, config, history_fetcher, result)
        analyzed_at = datetime.now()

        for start in range(0, len(targets), config.batch_size):
            batch = targets[start:start + config.batch_size]
            histories = _fetch_batch(conn, batch, config, history_fetcher, result)

            for symbol, bars in histories.items():
                position = positions[symbol]
                try:
                    triple = analyze_symbol(
                        symbol=symbol,
                        bars=bars,
                        benchmark_bars=benchmark_bars,
                        current_price=position['current_price'],
                        market_value=position['market_value'],
                        total_portfolio_value=total_portfolio_value,
                        sector_value=position['market_value'],
                        total_sector_value=sector_totals[symbol],
                        purchase_date=purchase_dates.get(symbol),
                    )
                except Exception as e:
                    logger.warning("Analysis failed for %s: %s", symbol, e)
                    result['failures'][symbol] = str(e)
                    continue

                with symbol_lock(symbol):
                    upsert_analysis_cache(conn, symbol, *triple, last_updated=analyzed_at)

                technicals, risk, momentum = triple
                result['results'][symbol] = {
                    'technicals': technicals,
                    'risk': risk,
                    'momentum': momentum,
                }
                logger.info("Analyzed %s: momentum %d (%s), risk %s",
                            symbol, momentum.score, momentum.signal, risk.risk_level)

            if start + config.batch_size < len(targets) and config.batch_delay_seconds > 0:
                time.sleep(config.batch_delay_seconds)

        if targets and not result['results']:
            error_msg = f"All {len(targets)} symbols failed analysis"
            return _finish(conn, result, start_time, RunStatus.FAILED, error_msg)

        return _finish(conn, result, start_time, RunStatus.COMPLETED)

    except Exception as e:
        logger.exception("Portfolio analysis failed (run %d)", run_id)
        return _finish(conn, result, start_time, RunStatus.FAILED, str(e))


def _fetch_bars(
    history_fetcher: HistoryFetcher,
    symbol: str,
    period: str
) -> Tuple[List[OhlcvBar], int]:
    """
    Fetch, normalize and validate one history.

    Returns:
        Tuple of (valid bars, number of bars dropped by validation)
    """
    valid_bars = []
    dropped = 0

    for bar in normalize_bars(history_fetcher(symbol, period)):
        try:
            validate_bar(bar)
            valid_bars.append(bar)
        except ValidationError as e:
            dropped += 1
            logger.warning("Validation warning for %s %s: %s", symbol, bar.date, e)

    return valid_bars, dropped


def _fetch_batch(
    conn: sqlite3.Connection,
    batch: List[str],
    config: AnalysisConfig,
    history_fetcher: HistoryFetcher,
    result: Dict[str, Any]
) -> Dict[str, List[OhlcvBar]]:
    """
    Fetch one batch of histories concurrently and store fresh bars.

    Returns:
        Bars per symbol, in batch order, for symbols with any history
    """
    histories: Dict[str, List[OhlcvBar]] = {}

    workers = max(1, min(config.max_workers, len(batch)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            symbol: executor.submit(_fetch_bars, history_fetcher, symbol, config.history_period)
            for symbol in batch
        }

        for symbol, future in futures.items():
            try:
                bars, dropped = future.result()
                result['validation_warnings'] += dropped
            except Exception as e:
                logger.warning("History fetch failed for %s: %s", symbol, e)
                bars = []

            if bars:
                with symbol_lock(symbol):
                    upsert_market_data(conn, symbol, bars)
            else:
                bars = get_market_data(conn, symbol)
                if bars:
                    logger.info("Using %d stored bars for %s", len(bars), symbol)

            if bars:
                histories[symbol] = bars
            else:
                result['failures'][symbol] = 'No price history available'

    return histories


def _benchmark_history(
    conn: sqlite3.Connection,
    config: AnalysisConfig,
    history_fetcher: HistoryFetcher,
    result: Dict[str, Any]
) -> List[OhlcvBar]:
    symbol = config.benchmark_symbol
    try:
        bars, dropped = _fetch_bars(history_fetcher, symbol, config.history_period)
        result['validation_warnings'] += dropped
    except Exception as e:
        logger.warning("Benchmark fetch failed for %s: %s", symbol, e)
        bars = []

    if bars:
        with symbol_lock(symbol):
            upsert_market_data(conn, symbol, bars)
        return bars

    bars = get_market_data(conn, symbol)
    if not bars:
        logger.warning("No benchmark history; relative strength will be 0")
    return bars


def _finish(
    conn: sqlite3.Connection,
    result: Dict[str, Any],
    start_time: datetime,
    status: RunStatus,
    error_message: Optional[str] = None
) -> Dict[str, Any]:
    result['analyzed'] = len(result['results'])
    result['failed'] = len(result['failures'])

    finish_run(
        conn=conn,
        run_id=result['run_id'],
        status=status,
        finished_at=datetime.now(),
        rows_in=result['analyzed'] + result['failed'],
        rows_out=result['analyzed'],
        error_message=error_message
    )

    result['status'] = status.value
    result['error_message'] = error_message
    result['duration_seconds'] = (datetime.now() - start_time).total_seconds()
    return result
