#!/usr/bin/env python3
"""
Main CLI for the Portfolio Analytics Workbench.
Usage: python cli.py {import,analyze,show,runs} [options]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from analysis.analysis_job import run_portfolio_analysis
from ingestion.providers.yfinance_adapter import fetch_quotes
from pipeline.config import AnalysisConfig, ConfigError, load_analysis_config
from pipeline.import_holdings import run_holdings_import
from storage.analysis_cache import AnalysisCacheEntry, get_analysis_cache
from storage.loaders import get_all_holdings, get_connection, init_database
from storage.run_registry import (
    PIPELINE_PORTFOLIO_ANALYSIS,
    RunStatus,
    latest_run,
    list_recent_runs,
)


INSUFFICIENT_DATA = 'insufficient data'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Import brokerage holdings and analyze momentum and risk',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py import ~/Downloads/Portfolio_Positions.csv
  python cli.py analyze
  python cli.py analyze AAPL MSFT
  python cli.py show AAPL
  python cli.py runs --limit 5
        """
    )
    parser.add_argument('--config',
                        help='YAML config file (default: ./config/analysis.yml)')
    parser.add_argument('--db-path',
                        help='Path to SQLite database (overrides config)')

    subparsers = parser.add_subparsers(dest='command', required=True)

    import_parser = subparsers.add_parser('import', help='Import a holdings CSV export')
    import_parser.add_argument('file', help='CSV file (brokerage or extended export)')
    import_parser.add_argument('--no-enrich',
                               action='store_true',
                               help='Skip quote enrichment after import')

    analyze_parser = subparsers.add_parser('analyze', help='Analyze held symbols')
    analyze_parser.add_argument('symbols', nargs='*', help='Symbols to analyze (default: all)')

    show_parser = subparsers.add_parser('show', help='Show cached analysis')
    show_parser.add_argument('symbols', nargs='*', help='Symbols to show (default: all held)')

    runs_parser = subparsers.add_parser('runs', help='List recent pipeline runs')
    runs_parser.add_argument('--limit', type=int, default=20, help='Number of runs (default: 20)')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_analysis_config(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.db_path:
        config.db_path = args.db_path

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    conn = get_connection(config.db_path)
    try:
        init_database(conn)

        if args.command == 'import':
            return import_command(conn, config, args.file, enrich=not args.no_enrich)
        if args.command == 'analyze':
            return analyze_command(conn, config, args.symbols)
        if args.command == 'show':
            return show_command(conn, args.symbols)
        return runs_command(conn, args.limit)
    finally:
        conn.close()


def import_command(conn, config: AnalysisConfig, file_path: str, enrich: bool = True) -> int:
    path = Path(file_path)
    if not path.exists():
        print(f"ERROR: File not found: {file_path}", file=sys.stderr)
        return 1

    quote_fetcher = None
    if enrich and config.enrich_on_import:
        def quote_fetcher(symbols):
            return fetch_quotes(symbols, config.batch_size, config.batch_delay_seconds)

    print(f"Importing holdings from {path}")
    result = run_holdings_import(path.read_bytes(), conn, quote_fetcher=quote_fetcher)

    if result['status'] != 'completed':
        print(f"ERROR: Import failed: {result['error_message']}", file=sys.stderr)
        return 1

    print(f"Imported {result['rows_stored']} holdings")
    if result['validation_warnings']:
        print(f"WARNING: {result['validation_warnings']} holdings failed validation")
    if quote_fetcher is not None:
        print(f"Enriched {result['symbols_enriched']} symbols with live quotes")
    print(f"Duration: {result['duration_seconds']:.1f}s")
    return 0


def analyze_command(conn, config: AnalysisConfig, symbols: List[str]) -> int:
    print(f"Analyzing {', '.join(symbols) if symbols else 'all holdings'} "
          f"(history {config.history_period}, benchmark {config.benchmark_symbol})")

    result = run_portfolio_analysis(conn, config, symbols=symbols or None)

    for symbol, error in result['failures'].items():
        print(f"WARNING: {symbol}: {error}")

    if result['status'] != 'completed':
        print(f"ERROR: Analysis failed: {result['error_message']}", file=sys.stderr)
        return 1

    print(f"Analyzed {result['analyzed']} symbols, {result['failed']} failed "
          f"({result['duration_seconds']:.1f}s)")
    if result['validation_warnings']:
        print(f"WARNING: {result['validation_warnings']} price bars failed validation")
    return 0


def show_command(conn, symbols: List[str]) -> int:
    if not symbols:
        symbols = list(dict.fromkeys(h.symbol for h in get_all_holdings(conn)))

    if not symbols:
        print("No holdings imported yet")
        return 0

    last = latest_run(conn, PIPELINE_PORTFOLIO_ANALYSIS, RunStatus.COMPLETED)
    if last is not None:
        print(f"Last analysis: {last['finished_at']:%Y-%m-%d %H:%M:%S}")

    for symbol in symbols:
        entry = get_analysis_cache(conn, symbol.upper())
        print(format_entry(symbol.upper(), entry))
    return 0


def runs_command(conn, limit: int) -> int:
    runs = list_recent_runs(conn, limit=limit)
    if not runs:
        print("No runs recorded")
        return 0

    for run in runs:
        duration = f"{run['duration_seconds']}s" if run['duration_seconds'] is not None else '-'
        line = (f"#{run['run_id']:<4} {run['pipeline_name']:<20} {run['status'].value:<10} "
                f"{run['started_at']:%Y-%m-%d %H:%M:%S}  {duration}")
        if run['error_message']:
            line += f"  ({run['error_message']})"
        print(line)
    return 0


def format_entry(symbol: str, entry: Optional[AnalysisCacheEntry]) -> str:
    """One-line summary of a cached analysis, or 'insufficient data'."""
    if entry is None:
        return f"{symbol:<8} {INSUFFICIENT_DATA}"

    t, r, m = entry.technicals, entry.risk, entry.momentum
    flags = []
    if t.golden_cross:
        flags.append('golden cross')
    if t.death_cross:
        flags.append('death cross')
    if r.days_until_long_term is not None:
        flags.append(f"long-term in {r.days_until_long_term}d")

    line = (f"{symbol:<8} momentum {m.score:>4} {m.signal:<10} {m.trend:<13} "
            f"RSI {t.rsi14:5.1f}  vs SMA50 {t.price_vs_sma50:+6.1f}%  "
            f"stop ${r.trailing_stop_price:,.2f} ({r.trailing_stop_percent:.1f}%)  "
            f"weight {r.portfolio_weight:.1f}%  risk {r.risk_level}")
    if flags:
        line += f"  [{', '.join(flags)}]"
    return line


if __name__ == '__main__':
    sys.exit(main())
