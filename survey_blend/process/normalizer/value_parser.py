# Path: survey_blend/process/normalizer/value_parser.py
"""
Cell Value Parsing

Tolerant parsing of survey cells. Anything that is not a usable number is
"absent" (None), never zero.
"""

import math
import re
from typing import Any, Optional


# Markers publishers use for suppressed or unavailable cells
ABSENT_MARKERS = frozenset({
    '', '-', '--', '*', '**', 'n/a', 'na', 'n.a.', 'null', 'none', 'nan',
    'insufficient data', 'suppressed',
})

_CURRENCY = re.compile(r'[$€£¥]')
_NUMBER = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')


def parse_numeric(value: Any) -> Optional[float]:
    """
    Parse a percentile or sample-size cell.

    Handles currency symbols, thousands separators, surrounding whitespace
    and accounting negatives "(1,234)".

    Args:
        value: Raw cell value

    Returns:
        Float value, or None if the cell is absent or non-numeric

    Example:
        parse_numeric(' $412,500 ') == 412500.0
        parse_numeric('N/A') is None
        parse_numeric(0) == 0.0
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number

    text = str(value).strip()
    if text.lower() in ABSENT_MARKERS:
        return None

    negative = False
    if text.startswith('(') and text.endswith(')'):
        negative = True
        text = text[1:-1].strip()

    text = _CURRENCY.sub('', text).replace(',', '').replace('\u00a0', '')
    text = ''.join(text.split())
    if text.endswith('%'):
        return None

    if not _NUMBER.match(text):
        return None

    number = float(text)
    if math.isinf(number):
        return None
    return -number if negative else number


def parse_count(value: Any) -> Optional[float]:
    """
    Parse a sample-size cell.

    Returns:
        Non-negative count, or None if absent, non-numeric or negative
    """
    number = parse_numeric(value)
    if number is None or number < 0:
        return None
    return number


def parse_text(value: Any) -> Optional[str]:
    """
    Parse a label cell.

    The text is returned exactly as given; matching normalizes it later.

    Returns:
        Cell text, or None if the cell is blank
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value)
    return text if text.strip() else None


__all__ = ['parse_numeric', 'parse_count', 'parse_text', 'ABSENT_MARKERS']
