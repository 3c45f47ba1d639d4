# Path: survey_blend/process/blending/models.py
"""
Blending Models

Blended results carry their full contribution breakdown so the caller can
show how every number was computed without going back to the store.
"""

from dataclasses import dataclass, field
from typing import Optional

from survey_blend.constants import BlendMethod
from survey_blend.process.normalizer.models import NormalizedRecordData


@dataclass(frozen=True)
class BlendContribution:
    """
    One record's part in a blended value.

    Attributes:
        record_id: Contributing normalized record
        survey_source: Source survey
        survey_year: Survey year
        raw_specialty: Specialty as the source labelled it
        n_orgs: Organizations reported by the record
        n_incumbents: Incumbents reported by the record
        percentiles: Raw percentile values of the record
        weight: Weight applied (0-1)
    """
    record_id: str
    survey_source: str
    survey_year: int
    raw_specialty: str
    n_orgs: Optional[float]
    n_incumbents: Optional[float]
    percentiles: dict[str, Optional[float]]
    weight: float

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'record_id': self.record_id,
            'survey_source': self.survey_source,
            'survey_year': self.survey_year,
            'raw_specialty': self.raw_specialty,
            'n_orgs': self.n_orgs,
            'n_incumbents': self.n_incumbents,
            'percentiles': dict(self.percentiles),
            'weight': self.weight,
        }


@dataclass
class BlendedResult:
    """
    One blended output row.

    Attributes:
        group_key: Grouping field -> value
        variable: Canonical metric variable
        percentiles: Blended value per requested percentile (None when no
            contributor reported it)
        total_incumbents: Straight sum across contributors
        total_orgs: Straight sum across contributors
        contributions: Per-record breakdown, in record order
        method: Requested method
        effective_method: Method actually applied
        fallback_applied: True when weighted fell back to simple
        renormalized: True when sparse percentiles were renormalized
    """
    group_key: dict[str, str]
    variable: str
    percentiles: dict[str, Optional[float]]
    total_incumbents: Optional[float]
    total_orgs: Optional[float]
    contributions: list[BlendContribution] = field(default_factory=list)
    method: BlendMethod = BlendMethod.WEIGHTED
    effective_method: BlendMethod = BlendMethod.WEIGHTED
    fallback_applied: bool = False
    renormalized: bool = False

    @property
    def contributor_count(self) -> int:
        return len(self.contributions)

    @property
    def weight_sum(self) -> float:
        return sum(c.weight for c in self.contributions)

    @property
    def specialty(self) -> str:
        return self.group_key.get('specialty', '')

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'group_key': dict(self.group_key),
            'variable': self.variable,
            'percentiles': dict(self.percentiles),
            'total_incumbents': self.total_incumbents,
            'total_orgs': self.total_orgs,
            'contributor_count': self.contributor_count,
            'contributions': [c.to_dict() for c in self.contributions],
            'method': self.method.value,
            'effective_method': self.effective_method.value,
            'fallback_applied': self.fallback_applied,
            'renormalized': self.renormalized,
        }


@dataclass
class ReportGroup:
    """
    One group of a report.

    Either blended is set, or the caller renders records individually
    (method 'none' or a single-record group).

    Attributes:
        key: Flattened group key ('Cardiology|West')
        group_key: Grouping field -> value
        records: Records in the group
        blended: Blended result, if one was produced
    """
    key: str
    group_key: dict[str, str]
    records: list[NormalizedRecordData] = field(default_factory=list)
    blended: Optional[BlendedResult] = None

    @property
    def is_blended(self) -> bool:
        return self.blended is not None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'key': self.key,
            'group_key': dict(self.group_key),
            'records': [r.to_dict() for r in self.records],
            'blended': self.blended.to_dict() if self.blended else None,
        }


@dataclass
class Report:
    """
    Report output: one ReportGroup per composite key.

    Attributes:
        variable: Canonical metric variable reported
        method: Requested blending method
        percentiles: Requested percentiles
        grouping: Grouping field names
        groups: Groups in first-seen order
    """
    variable: str
    method: BlendMethod
    percentiles: tuple[str, ...]
    grouping: tuple[str, ...]
    groups: list[ReportGroup] = field(default_factory=list)

    def find(self, key: str) -> Optional[ReportGroup]:
        """Find a group by flattened key."""
        return next((g for g in self.groups if g.key == key), None)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'variable': self.variable,
            'method': self.method.value,
            'percentiles': list(self.percentiles),
            'grouping': list(self.grouping),
            'groups': [g.to_dict() for g in self.groups],
        }


__all__ = ['BlendContribution', 'BlendedResult', 'ReportGroup', 'Report']
