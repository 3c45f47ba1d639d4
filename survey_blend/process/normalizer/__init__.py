# Path: survey_blend/process/normalizer/__init__.py
"""
Row Normalization

Wide survey rows in, canonical long-format records out.
"""

from .column_aliases import ColumnKind, ColumnSpec, header_key, parse_header
from .value_parser import parse_numeric, parse_count, parse_text
from .models import NormalizedRecordData, RejectedRow, NormalizationResult
from .row_normalizer import RowNormalizer, REQUIRED_FIELDS

__all__ = [
    'ColumnKind',
    'ColumnSpec',
    'header_key',
    'parse_header',
    'parse_numeric',
    'parse_count',
    'parse_text',
    'NormalizedRecordData',
    'RejectedRow',
    'NormalizationResult',
    'RowNormalizer',
    'REQUIRED_FIELDS',
]
