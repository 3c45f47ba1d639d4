# Path: survey_blend/process/blending/__init__.py
"""
Blending

Grouping of normalized records and multi-source percentile blending.
"""

from .grouping import GroupingSpec, GROUPING_PRESETS, resolve_grouping, group_records
from .models import BlendContribution, BlendedResult, ReportGroup, Report
from .aggregator import BlendingAggregator, resolve_variable, validate_percentiles

__all__ = [
    'GroupingSpec',
    'GROUPING_PRESETS',
    'resolve_grouping',
    'group_records',
    'BlendContribution',
    'BlendedResult',
    'ReportGroup',
    'Report',
    'BlendingAggregator',
    'resolve_variable',
    'validate_percentiles',
]
