# Path: survey_blend/database/operations/learned_ops.py
"""
Learned Mapping Operations

CRUD operations for LearnedMapping records.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from survey_blend.constants import GLOBAL_SOURCE_SCOPE
from survey_blend.core.errors import FieldError, ValidationError
from survey_blend.database.models.learned_mappings import LearnedMapping
from survey_blend.database.models.standardized_mappings import normalize_key


logger = logging.getLogger(__name__)


class LearnedOperations:
    """
    Operations for LearnedMapping records.

    Example:
        with session_scope() as session:
            LearnedOperations.upsert(
                session, 'specialty', 'Peds Cardio', 'Pediatric Cardiology',
                source_scope='SullivanCotter',
            )
    """

    @staticmethod
    def upsert(
        session: Session,
        mapping_type: str,
        label: str,
        canonical_name: str,
        source_scope: Optional[str] = None,
    ) -> LearnedMapping:
        """
        Record a correction, replacing any earlier one for the same key.

        Args:
            session: Database session
            mapping_type: Vocabulary
            label: Raw label
            canonical_name: Canonical name it should resolve to
            source_scope: Survey source, or None for every source

        Returns:
            Created or updated LearnedMapping

        Raises:
            ValidationError: If label or canonical name is empty
        """
        label_text = ' '.join(str(label or '').split())
        target = ' '.join(str(canonical_name or '').split())
        errors = []
        if not label_text:
            errors.append(FieldError('label', 'empty label', label))
        if not target:
            errors.append(FieldError('canonical_name', 'empty name', canonical_name))
        if errors:
            raise ValidationError("Invalid learned mapping", field_errors=errors)

        scope = source_scope or GLOBAL_SOURCE_SCOPE
        learned = LearnedOperations.find(session, mapping_type, label_text, scope)

        if learned is None:
            learned = LearnedMapping(
                mapping_type=mapping_type,
                label=label_text,
                label_key=normalize_key(label_text),
                source_scope=scope,
                canonical_name=target,
            )
            session.add(learned)
        else:
            learned.label = label_text
            learned.canonical_name = target
        session.flush()

        logger.info(f"Learned {mapping_type} '{label_text}' -> '{target}' (scope={scope})")
        return learned

    @staticmethod
    def find(
        session: Session,
        mapping_type: str,
        label: str,
        source_scope: str = GLOBAL_SOURCE_SCOPE,
    ) -> Optional[LearnedMapping]:
        """Find learned mapping by exact (type, label, scope) key."""
        return session.query(LearnedMapping).filter_by(
            mapping_type=mapping_type,
            label_key=normalize_key(label),
            source_scope=source_scope,
        ).first()

    @staticmethod
    def list_learned(
        session: Session,
        mapping_type: Optional[str] = None,
    ) -> list[LearnedMapping]:
        """List learned mappings in creation order."""
        query = session.query(LearnedMapping)
        if mapping_type is not None:
            query = query.filter_by(mapping_type=mapping_type)
        return query.order_by(LearnedMapping.created_at, LearnedMapping.label_key).all()

    @staticmethod
    def build_index(session: Session, mapping_type: str) -> dict[tuple[str, str], str]:
        """
        Build the learned lookup index for a mapping type.

        Returns:
            Dict of (label_key, source_scope) -> canonical name
        """
        return {
            (lm.label_key, lm.source_scope): lm.canonical_name
            for lm in LearnedOperations.list_learned(session, mapping_type)
        }

    @staticmethod
    def delete(session: Session, learned_id: str) -> bool:
        """
        Delete one learned mapping.

        Returns:
            True if a row was deleted
        """
        learned = session.get(LearnedMapping, learned_id)
        if learned is None:
            return False
        session.delete(learned)
        session.flush()
        logger.info(f"Removed learned mapping '{learned.label}'")
        return True

    @staticmethod
    def snapshot(learned: LearnedMapping) -> dict:
        """Capture a learned mapping for later restore."""
        return {
            'learned_id': learned.learned_id,
            'mapping_type': learned.mapping_type,
            'label': learned.label,
            'label_key': learned.label_key,
            'source_scope': learned.source_scope,
            'canonical_name': learned.canonical_name,
            'created_at': learned.created_at,
            'updated_at': learned.updated_at,
        }

    @staticmethod
    def restore_all(session: Session, snapshots: list[dict]) -> None:
        """Re-insert learned mappings captured by snapshot()."""
        for data in snapshots:
            session.add(LearnedMapping(**data))
        session.flush()

    @staticmethod
    def clear(session: Session, mapping_type: Optional[str] = None) -> list[dict]:
        """
        Delete learned mappings in bulk.

        Args:
            session: Database session
            mapping_type: Restrict to one vocabulary (default: all)

        Returns:
            Snapshots of the deleted rows
        """
        rows = LearnedOperations.list_learned(session, mapping_type)
        snapshots = [LearnedOperations.snapshot(lm) for lm in rows]
        for lm in rows:
            session.delete(lm)
        session.flush()

        logger.info(f"Cleared {len(rows)} learned mapping(s)")
        return snapshots


__all__ = ['LearnedOperations']
