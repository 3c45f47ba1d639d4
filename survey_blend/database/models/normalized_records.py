# Path: survey_blend/database/models/normalized_records.py
"""
Normalized Record Model

Long-format survey records: one row per (source row, metric variable).

Records are immutable once written. Re-normalization deletes and inserts,
it never updates in place. Absent percentiles are stored as NULL.
"""

import uuid as uuid_module
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, Float, JSON, Index

from survey_blend.database.models.base import Base


class NormalizedRecord(Base):
    """
    One metric's sample sizes and percentiles after canonicalization.

    raw_* columns keep the label exactly as the source had it so the
    record can be re-canonicalized when mappings change.
    """
    __tablename__ = 'normalized_records'
    __table_args__ = (
        Index('ix_records_source_year', 'survey_source', 'survey_year'),
        Index('ix_records_specialty_variable', 'specialty', 'variable'),
    )

    record_id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid_module.uuid4()),
        comment="Unique record identifier"
    )

    # Provenance
    survey_source = Column(String(100), nullable=False, comment="Source survey identifier")
    survey_year = Column(Integer, nullable=False, comment="Survey year")
    source_row_index = Column(Integer, comment="Index of the raw row within its upload")
    original_data = Column(JSON, comment="Raw row as uploaded")

    # Canonical dimensions (raw value kept when unresolved)
    specialty = Column(String(255), nullable=False)
    raw_specialty = Column(String(255), nullable=False)
    provider_type = Column(String(255), nullable=False)
    raw_provider_type = Column(String(255), nullable=False)
    region = Column(String(255), nullable=False)
    raw_region = Column(String(255), nullable=False)
    variable = Column(String(255), nullable=False)
    raw_variable = Column(String(255), nullable=False)

    # Sample sizes
    n_orgs = Column(Float, comment="Sample size in organizations")
    n_incumbents = Column(Float, comment="Sample size in incumbents")

    # Percentiles
    p25 = Column(Float)
    p50 = Column(Float)
    p75 = Column(Float)
    p90 = Column(Float)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<NormalizedRecord(specialty='{self.specialty}', "
            f"variable='{self.variable}', source='{self.survey_source}', "
            f"year={self.survey_year})>"
        )


__all__ = ['NormalizedRecord']
