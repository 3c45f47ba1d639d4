# Path: survey_blend/process/normalizer/models.py
"""
Normalization Models

Data structures produced by the Row Normalizer.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from survey_blend.constants import TRACKED_PERCENTILES
from survey_blend.core.errors import ResolutionMiss, ValidationError


@dataclass(frozen=True)
class NormalizedRecordData:
    """
    One metric's sample sizes and percentiles for one source row.

    Immutable: re-canonicalization produces a new record via
    with_dimensions(), with a new record_id.

    Attributes:
        survey_source: Source survey identifier
        survey_year: Survey year
        specialty / provider_type / region / variable: Canonical values
            (raw value when unresolved)
        raw_*: Values exactly as the source had them
        n_orgs: Sample size in organizations (None if not reported)
        n_incumbents: Sample size in incumbents (None if not reported)
        p25..p90: Percentile values (None when absent, never 0 by default)
        source_row_index: Index of the raw row in its upload
        original_data: Raw row for audit
    """
    survey_source: str
    survey_year: int
    specialty: str
    raw_specialty: str
    provider_type: str
    raw_provider_type: str
    region: str
    raw_region: str
    variable: str
    raw_variable: str
    n_orgs: Optional[float] = None
    n_incumbents: Optional[float] = None
    p25: Optional[float] = None
    p50: Optional[float] = None
    p75: Optional[float] = None
    p90: Optional[float] = None
    source_row_index: Optional[int] = None
    original_data: Optional[dict] = field(default=None, compare=False)
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def percentiles(self) -> dict[str, Optional[float]]:
        """Tracked percentiles in display order."""
        return {name: getattr(self, name) for name in TRACKED_PERCENTILES}

    def percentile(self, name: str) -> Optional[float]:
        """Get one percentile value (None when absent)."""
        if name not in TRACKED_PERCENTILES:
            raise KeyError(f"Untracked percentile: {name}")
        return getattr(self, name)

    def with_dimensions(self, **canonical: str) -> 'NormalizedRecordData':
        """Copy with new canonical values and a fresh record_id."""
        return replace(self, record_id=str(uuid.uuid4()), **canonical)

    def to_row(self) -> dict[str, Any]:
        """Column values for RecordOperations.insert_records()."""
        return {
            'record_id': self.record_id,
            'survey_source': self.survey_source,
            'survey_year': self.survey_year,
            'specialty': self.specialty,
            'raw_specialty': self.raw_specialty,
            'provider_type': self.provider_type,
            'raw_provider_type': self.raw_provider_type,
            'region': self.region,
            'raw_region': self.raw_region,
            'variable': self.variable,
            'raw_variable': self.raw_variable,
            'n_orgs': self.n_orgs,
            'n_incumbents': self.n_incumbents,
            'p25': self.p25,
            'p50': self.p50,
            'p75': self.p75,
            'p90': self.p90,
            'source_row_index': self.source_row_index,
            'original_data': self.original_data,
        }

    @classmethod
    def from_orm(cls, record) -> 'NormalizedRecordData':
        """Build from a NormalizedRecord row."""
        return cls(
            record_id=record.record_id,
            survey_source=record.survey_source,
            survey_year=record.survey_year,
            specialty=record.specialty,
            raw_specialty=record.raw_specialty,
            provider_type=record.provider_type,
            raw_provider_type=record.raw_provider_type,
            region=record.region,
            raw_region=record.raw_region,
            variable=record.variable,
            raw_variable=record.raw_variable,
            n_orgs=record.n_orgs,
            n_incumbents=record.n_incumbents,
            p25=record.p25,
            p50=record.p50,
            p75=record.p75,
            p90=record.p90,
            source_row_index=record.source_row_index,
            original_data=record.original_data,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = self.to_row()
        data.pop('original_data')
        return data


@dataclass
class RejectedRow:
    """
    A raw row that failed validation.

    Attributes:
        row_index: Index of the row in its upload
        row: The raw row
        error: Validation error naming the failed field(s)
    """
    row_index: int
    row: dict
    error: ValidationError

    @property
    def reason(self) -> str:
        return self.error.message

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'row_index': self.row_index,
            'row': self.row,
            'reason': self.reason,
            'fields': self.error.fields,
        }


@dataclass
class NormalizationResult:
    """
    Outcome of normalizing a batch of raw rows.

    Attributes:
        accepted: Normalized records, in row then metric order
        rejected: Rows that failed validation
        unmapped: Labels that did not resolve, with row counts
        rows_processed: Number of input rows
    """
    accepted: list[NormalizedRecordData] = field(default_factory=list)
    rejected: list[RejectedRow] = field(default_factory=list)
    unmapped: list[ResolutionMiss] = field(default_factory=list)
    rows_processed: int = 0

    @property
    def accepted_rows(self) -> int:
        return self.rows_processed - len(self.rejected)

    def stats(self) -> dict:
        """Expansion statistics for the batch."""
        variable_counts: dict[str, int] = {}
        for record in self.accepted:
            variable_counts[record.variable] = variable_counts.get(record.variable, 0) + 1

        accepted_rows = self.accepted_rows
        return {
            'rows_processed': self.rows_processed,
            'rows_accepted': accepted_rows,
            'rows_rejected': len(self.rejected),
            'records_created': len(self.accepted),
            'unmapped_labels': len(self.unmapped),
            'variable_counts': variable_counts,
            'expansion_factor': (
                round(len(self.accepted) / accepted_rows, 4) if accepted_rows else 0.0
            ),
        }

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'accepted': [record.to_dict() for record in self.accepted],
            'rejected': [row.to_dict() for row in self.rejected],
            'unmapped': [miss.to_dict() for miss in self.unmapped],
            'stats': self.stats(),
        }


__all__ = ['NormalizedRecordData', 'RejectedRow', 'NormalizationResult']
