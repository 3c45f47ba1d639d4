# Path: survey_blend/process/normalizer/column_aliases.py
"""
Column Alias Parsing

Maps raw column headers to logical columns, tolerant of case, spaces vs
underscores and the abbreviations survey publishers use.

Header kinds:
- field: specialty, provider_type, region
- sample: n_orgs / n_incumbents, either row-level or metric-specific
  ("tcc_n_incumbents")
- metric: one (metric, percentile) pair ("TCC_p50", "wRVU 75th Percentile")
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional

from survey_blend.constants import Metric, TRACKED_PERCENTILES


class ColumnKind(str, Enum):
    """Kind of logical column a header maps to."""
    FIELD = "field"
    SAMPLE = "sample"
    METRIC = "metric"


@dataclass(frozen=True)
class ColumnSpec:
    """
    Parsed column header.

    Attributes:
        kind: Field, sample-size or metric column
        name: Field name, sample name ('n_orgs'/'n_incumbents') or percentile
        metric: Metric for metric and metric-specific sample columns
    """
    kind: ColumnKind
    name: str
    metric: Optional[Metric] = None


FIELD_ALIASES: dict[str, str] = {
    'specialty': 'specialty',
    'specialty_name': 'specialty',
    'provider_specialty': 'specialty',
    'survey_specialty': 'specialty',
    'provider_type': 'provider_type',
    'providertype': 'provider_type',
    'provider_category': 'provider_type',
    'region': 'region',
    'geographic_region': 'region',
    'geographicregion': 'region',
    'geo_region': 'region',
    'geography': 'region',
}

SAMPLE_ALIASES: dict[str, str] = {
    'n_orgs': 'n_orgs',
    'norgs': 'n_orgs',
    'num_orgs': 'n_orgs',
    'orgs': 'n_orgs',
    'number_of_orgs': 'n_orgs',
    'number_of_organizations': 'n_orgs',
    'n_organizations': 'n_orgs',
    'organizations': 'n_orgs',
    'n_incumbents': 'n_incumbents',
    'nincumbents': 'n_incumbents',
    'num_incumbents': 'n_incumbents',
    'incumbents': 'n_incumbents',
    'number_of_incumbents': 'n_incumbents',
    'n_incs': 'n_incumbents',
    'n_providers': 'n_incumbents',
}

METRIC_ALIASES: dict[str, Metric] = {
    'tcc': Metric.TCC,
    'total_cash_compensation': Metric.TCC,
    'total_cash_comp': Metric.TCC,
    'total_compensation': Metric.TCC,
    'total_comp': Metric.TCC,
    'wrvu': Metric.WRVU,
    'wrvus': Metric.WRVU,
    'work_rvu': Metric.WRVU,
    'work_rvus': Metric.WRVU,
    'cf': Metric.CF,
    'conversion_factor': Metric.CF,
    'tcc_per_wrvu': Metric.CF,
    'comp_per_wrvu': Metric.CF,
}

# Longest aliases first so "tcc_per_wrvu" wins over "tcc"
_METRIC_ALIAS_TOKENS = sorted(
    ((tuple(alias.split('_')), metric) for alias, metric in METRIC_ALIASES.items()),
    key=lambda item: -len(item[0]),
)

PERCENTILE_FILLER = frozenset({'percentile', 'pctl', 'pct', 'ile', 'th'})

_PERCENTILE_TOKEN = re.compile(r'^p?(\d{1,2})(st|nd|rd|th)?$')
_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def header_key(header: str) -> str:
    """
    Normalize a header to snake case.

    Example:
        header_key('Provider Type') == 'provider_type'
        header_key('TCC 50th %ile') == 'tcc_50th_ile'
    """
    return _NON_ALNUM.sub('_', str(header).lower()).strip('_')


def _parse_percentile(tokens: tuple[str, ...]) -> Optional[str]:
    """Turn the non-metric part of a header into a tracked percentile."""
    meaningful = [t for t in tokens if t not in PERCENTILE_FILLER]
    if len(meaningful) != 1:
        return None

    token = meaningful[0]
    if token == 'median':
        return 'p50'

    match = _PERCENTILE_TOKEN.match(token)
    if match is None:
        return None
    name = f"p{int(match.group(1))}"
    return name if name in TRACKED_PERCENTILES else None


def _split_metric(tokens: tuple[str, ...]) -> Optional[tuple[Metric, tuple[str, ...]]]:
    """Find a metric alias at the start or end of the header tokens."""
    for alias_tokens, metric in _METRIC_ALIAS_TOKENS:
        size = len(alias_tokens)
        if len(tokens) <= size:
            continue
        if tokens[:size] == alias_tokens:
            return metric, tokens[size:]
        if tokens[-size:] == alias_tokens:
            return metric, tokens[:-size]
    return None


@lru_cache(maxsize=1024)
def parse_header(header: str) -> Optional[ColumnSpec]:
    """
    Parse a raw column header.

    Args:
        header: Column name as it appears in the upload

    Returns:
        ColumnSpec, or None for columns the normalizer ignores
    """
    key = header_key(header)
    if not key:
        return None

    if key in FIELD_ALIASES:
        return ColumnSpec(ColumnKind.FIELD, FIELD_ALIASES[key])
    if key in SAMPLE_ALIASES:
        return ColumnSpec(ColumnKind.SAMPLE, SAMPLE_ALIASES[key])

    split = _split_metric(tuple(key.split('_')))
    if split is None:
        return None
    metric, rest = split

    sample = SAMPLE_ALIASES.get('_'.join(rest))
    if sample is not None:
        return ColumnSpec(ColumnKind.SAMPLE, sample, metric)

    percentile = _parse_percentile(rest)
    if percentile is not None:
        return ColumnSpec(ColumnKind.METRIC, percentile, metric)
    return None


__all__ = [
    'ColumnKind',
    'ColumnSpec',
    'FIELD_ALIASES',
    'SAMPLE_ALIASES',
    'METRIC_ALIASES',
    'header_key',
    'parse_header',
]
