# Path: survey_blend/database/models/standardized_mappings.py
"""
Standardized Mapping Models

Canonical-name registry: one StandardizedMapping per canonical name and
mapping type, owning the raw SourceLabel entries grouped under it.

Architecture:
- Mapping type namespaces (specialty, provider_type, region, variable)
- Source labels owned by value (delete-orphan), no back-references needed
- name_key / label_key hold the case- and whitespace-normalized text
"""

import uuid as uuid_module
from datetime import datetime

from sqlalchemy import (
    Column, String, DateTime, Integer, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from survey_blend.database.models.base import Base


def normalize_key(text: str) -> str:
    """
    Case- and whitespace-normalize a name for use as a lookup key.

    Args:
        text: Raw label or canonical name

    Returns:
        Lowercased text with runs of whitespace collapsed
    """
    return ' '.join(str(text).split()).lower()


class StandardizedMapping(Base):
    """
    Canonical name and the raw labels grouped under it.

    Example:
        mapping = StandardizedMapping(
            mapping_type='specialty',
            canonical_name='Cardiology',
            name_key='cardiology',
        )
    """
    __tablename__ = 'standardized_mappings'
    __table_args__ = (
        UniqueConstraint('mapping_type', 'name_key', name='uq_mapping_type_name'),
    )

    mapping_id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid_module.uuid4()),
        comment="Unique mapping identifier"
    )
    mapping_type = Column(
        String(32),
        nullable=False,
        index=True,
        comment="Vocabulary (specialty, provider_type, region, variable)"
    )
    canonical_name = Column(
        String(255),
        nullable=False,
        comment="Canonical name as displayed"
    )
    name_key = Column(
        String(255),
        nullable=False,
        comment="Normalized canonical name used for lookups"
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        comment="Record creation timestamp"
    )
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        comment="Record last update timestamp"
    )

    source_labels = relationship(
        "SourceLabel",
        cascade="all, delete-orphan",
        order_by="SourceLabel.position",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            'mapping_id': self.mapping_id,
            'mapping_type': self.mapping_type,
            'canonical_name': self.canonical_name,
            'source_labels': [label.to_dict() for label in self.source_labels],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<StandardizedMapping(type='{self.mapping_type}', "
            f"name='{self.canonical_name}', labels={len(self.source_labels)})>"
        )


class SourceLabel(Base):
    """
    Raw label observed in one survey source.

    frequency is advisory (UI sorting), not authoritative.
    """
    __tablename__ = 'source_labels'
    __table_args__ = (
        UniqueConstraint(
            'mapping_type', 'label_key', 'survey_source',
            name='uq_source_label'
        ),
    )

    label_id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid_module.uuid4()),
        comment="Unique label identifier"
    )
    mapping_id = Column(
        String(36),
        ForeignKey('standardized_mappings.mapping_id', ondelete='CASCADE'),
        nullable=False,
        index=True,
        comment="Owning mapping"
    )
    mapping_type = Column(
        String(32),
        nullable=False,
        comment="Copied from owning mapping for uniqueness checks"
    )
    label = Column(
        String(255),
        nullable=False,
        comment="Raw label text"
    )
    label_key = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Normalized raw label"
    )
    survey_source = Column(
        String(100),
        nullable=False,
        default='',
        comment="Originating survey source ('' when unknown)"
    )
    original_name = Column(
        String(255),
        comment="Raw text before display formatting"
    )
    frequency = Column(
        Integer,
        default=0,
        comment="Observed row count"
    )
    position = Column(
        Integer,
        default=0,
        comment="Insertion order within the mapping"
    )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'label': self.label,
            'survey_source': self.survey_source or None,
            'original_name': self.original_name,
            'frequency': self.frequency,
        }

    def __repr__(self) -> str:
        return f"<SourceLabel(label='{self.label}', source='{self.survey_source}')>"


__all__ = ['StandardizedMapping', 'SourceLabel', 'normalize_key']
