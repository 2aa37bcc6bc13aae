"""
Cell cleaners for brokerage CSV exports.
Pure functions - never raise on malformed input, degrade to 0 / empty string.
"""

import math
import re
from typing import Any


# Leading numeric prefix, e.g. "12.5" out of "12.5abc"
_NUMERIC_PREFIX = re.compile(r'^-?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?')

# Characters that carry formatting only
_STRIP_CHARS = re.compile(r'[$,%+\s]')


def clean_number(value: Any) -> float:
    """
    Parse a formatted numeric cell to float.

    Handles currency symbols, thousands separators, percent signs and
    accounting notation where parentheses mean negative:

        "$1,234.56"  -> 1234.56
        "($123.45)"  -> -123.45
        "-4.2%"      -> -4.2
        "n/a", ""    -> 0.0

    Args:
        value: Raw cell value (usually a string)

    Returns:
        Parsed float, or 0.0 when the cell is blank or unparseable
    """
    if value is None:
        return 0.0

    if isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    text = _STRIP_CHARS.sub('', str(value))
    if not text:
        return 0.0

    negative = False
    if text.startswith('(') and text.endswith(')'):
        negative = True
        text = text[1:-1]
    elif text.startswith('(') or text.endswith(')'):
        text = text.strip('()')

    match = _NUMERIC_PREFIX.match(text)
    if match is None:
        return 0.0

    try:
        number = float(match.group(0))
    except ValueError:
        return 0.0

    if not math.isfinite(number):
        return 0.0

    return -number if negative else number


def clean_text(value: Any) -> str:
    """Trim a text cell; None becomes empty string."""
    if value is None:
        return ''
    return str(value).strip()


def is_blank(value: Any) -> bool:
    """True when a cell carries no content (empty, whitespace, or dashes)."""
    text = clean_text(value)
    return text == '' or text.strip('-') == ''
