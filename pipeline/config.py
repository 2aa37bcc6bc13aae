"""
Analysis configuration - YAML file with environment overrides.
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from ingestion.providers.yfinance_adapter import HISTORY_PERIODS

# Load environment variables
load_dotenv()

DEFAULT_CONFIG_PATH = './config/analysis.yml'

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

# Environment variable -> config field
ENV_OVERRIDES = {
    'PORTFOLIO_DB_PATH': 'db_path',
    'HISTORY_PERIOD': 'history_period',
    'BENCHMARK_SYMBOL': 'benchmark_symbol',
    'BATCH_SIZE': 'batch_size',
    'BATCH_DELAY_S': 'batch_delay_seconds',
    'MAX_WORKERS': 'max_workers',
    'LOG_LEVEL': 'log_level',
}


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


@dataclass
class AnalysisConfig:
    """Settings shared by the import and analysis pipelines."""
    db_path: str = './data/portfolio.db'
    history_period: str = '1y'
    benchmark_symbol: str = 'SPY'
    batch_size: int = 5
    batch_delay_seconds: float = 0.5
    max_workers: int = 5
    log_level: str = 'INFO'
    enrich_on_import: bool = True


def load_analysis_config(path: Optional[str] = None) -> AnalysisConfig:
    """
    Load configuration from YAML, then apply environment overrides.

    The file is taken from path, else ANALYSIS_CONFIG_PATH, else
    ./config/analysis.yml. A missing default file means built-in defaults;
    a missing file that was asked for explicitly is an error.

    Args:
        path: Optional YAML file path

    Returns:
        Validated AnalysisConfig

    Raises:
        ConfigError: If the file is unreadable or a value is invalid
    """
    explicit = path or os.getenv('ANALYSIS_CONFIG_PATH')
    config_file = Path(explicit or DEFAULT_CONFIG_PATH)

    values: Dict[str, Any] = {}
    if config_file.exists():
        values = _read_yaml(config_file)
    elif explicit:
        raise ConfigError(f"Config file not found: {config_file}")

    known = {f.name for f in fields(AnalysisConfig)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    for env_name, field_name in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            values[field_name] = env_value

    return _coerce(replace(AnalysisConfig(), **values))


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config {config_file}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_file} must be a mapping")

    # Settings may sit under an 'analysis' section
    section = data.get('analysis', data)
    if not isinstance(section, dict):
        raise ConfigError("Config section 'analysis' must be a mapping")
    return dict(section)


def _coerce(config: AnalysisConfig) -> AnalysisConfig:
    try:
        batch_size = int(config.batch_size)
        max_workers = int(config.max_workers)
        batch_delay = float(config.batch_delay_seconds)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e

    if batch_size < 1:
        raise ConfigError(f"batch_size must be >= 1, got {batch_size}")
    if max_workers < 1:
        raise ConfigError(f"max_workers must be >= 1, got {max_workers}")
    if batch_delay < 0:
        raise ConfigError(f"batch_delay_seconds must be >= 0, got {batch_delay}")

    history_period = str(config.history_period)
    if history_period not in HISTORY_PERIODS:
        raise ConfigError(
            f"history_period must be one of {', '.join(HISTORY_PERIODS)}, got {history_period}"
        )

    log_level = str(config.log_level).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {log_level}")

    benchmark = str(config.benchmark_symbol).strip().upper()
    if not benchmark:
        raise ConfigError("benchmark_symbol must be non-empty")

    enrich = config.enrich_on_import
    if isinstance(enrich, str):
        enrich = enrich.strip().lower() in ('1', 'true', 'yes', 'on')

    return AnalysisConfig(
        db_path=str(config.db_path),
        history_period=history_period,
        benchmark_symbol=benchmark,
        batch_size=batch_size,
        batch_delay_seconds=batch_delay,
        max_workers=max_workers,
        log_level=log_level,
        enrich_on_import=bool(enrich),
    )
