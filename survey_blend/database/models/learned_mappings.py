# Path: survey_blend/database/models/learned_mappings.py
"""
Learned Mapping Model

Single raw-label corrections remembered independently of a full
Standardized Mapping. Consulted before exact matching and similarity.
"""

import uuid as uuid_module
from datetime import datetime

from sqlalchemy import Column, String, DateTime, UniqueConstraint

from survey_blend.constants import GLOBAL_SOURCE_SCOPE
from survey_blend.database.models.base import Base


class LearnedMapping(Base):
    """
    Remembered correction: raw label -> canonical name.

    source_scope is a survey source, or '*' for every source.
    """
    __tablename__ = 'learned_mappings'
    __table_args__ = (
        UniqueConstraint(
            'mapping_type', 'label_key', 'source_scope',
            name='uq_learned_label_scope'
        ),
    )

    learned_id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid_module.uuid4()),
        comment="Unique learned mapping identifier"
    )
    mapping_type = Column(
        String(32),
        nullable=False,
        index=True,
        comment="Vocabulary (specialty, provider_type, region, variable)"
    )
    label = Column(
        String(255),
        nullable=False,
        comment="Raw label as corrected"
    )
    label_key = Column(
        String(255),
        nullable=False,
        comment="Normalized raw label"
    )
    source_scope = Column(
        String(100),
        nullable=False,
        default=GLOBAL_SOURCE_SCOPE,
        comment="Survey source or '*' for all sources"
    )
    canonical_name = Column(
        String(255),
        nullable=False,
        comment="Canonical name the label resolves to"
    )

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'learned_id': self.learned_id,
            'mapping_type': self.mapping_type,
            'label': self.label,
            'source_scope': self.source_scope,
            'canonical_name': self.canonical_name,
        }

    def __repr__(self) -> str:
        return (
            f"<LearnedMapping('{self.label}' -> '{self.canonical_name}', "
            f"scope='{self.source_scope}')>"
        )


__all__ = ['LearnedMapping']
