# Path: survey_blend/database/operations/mapping_ops.py
"""
Mapping Operations

CRUD operations for StandardizedMapping and SourceLabel records.

Enforces the registry invariants the schema alone cannot:
- a mapping always owns at least one source label
- a normalized raw label belongs to exactly one mapping per mapping type
- canonical names are unique per mapping type after normalization
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session

from survey_blend.core.errors import (
    FieldError,
    MappingConflictError,
    MappingNotFoundError,
    ValidationError,
)
from survey_blend.database.models.standardized_mappings import (
    StandardizedMapping,
    SourceLabel,
    normalize_key,
)


logger = logging.getLogger(__name__)

LabelInput = Union[str, dict]


def coerce_label(value: LabelInput) -> dict:
    """
    Coerce a label argument into a label dict.

    Accepts a plain string or a dict with 'label' and optional
    'survey_source', 'original_name', 'frequency'.

    Raises:
        ValidationError: If the label text is empty
    """
    if isinstance(value, str):
        value = {'label': value}

    text = ' '.join(str(value.get('label') or '').split())
    if not text:
        raise ValidationError(
            "Source label must not be empty",
            field_errors=[FieldError('label', 'empty label', value.get('label'))],
        )

    return {
        'label': text,
        'label_key': normalize_key(text),
        'survey_source': value.get('survey_source') or '',
        'original_name': value.get('original_name') or value.get('label'),
        'frequency': int(value.get('frequency') or 0),
    }


class MappingOperations:
    """
    Operations for StandardizedMapping records.

    All methods require a session to be passed in.

    Example:
        with session_scope() as session:
            mapping = MappingOperations.create_mapping(
                session,
                mapping_type='specialty',
                canonical_name='Cardiology',
                source_labels=['Cardio', {'label': 'Cardiology', 'survey_source': 'B'}],
            )
    """

    @staticmethod
    def create_mapping(
        session: Session,
        mapping_type: str,
        canonical_name: str,
        source_labels: Iterable[LabelInput],
    ) -> StandardizedMapping:
        """
        Create a mapping grouping one or more raw labels.

        Args:
            session: Database session
            mapping_type: Vocabulary the mapping belongs to
            canonical_name: Canonical name (display form)
            source_labels: Raw labels to group under it

        Returns:
            Created StandardizedMapping

        Raises:
            ValidationError: If the name is empty or no labels are given
            MappingConflictError: If the name or a label is already mapped
        """
        display_name = ' '.join(str(canonical_name or '').split())
        if not display_name:
            raise ValidationError(
                "Canonical name must not be empty",
                field_errors=[FieldError('canonical_name', 'empty name', canonical_name)],
            )

        labels = MappingOperations._merge_duplicates(
            [coerce_label(label) for label in source_labels]
        )
        if not labels:
            raise ValidationError(
                "A mapping requires at least one source label",
                field_errors=[FieldError('source_labels', 'no labels given', [])],
            )

        name_key = normalize_key(display_name)
        existing = MappingOperations.find_by_name(session, mapping_type, display_name)
        if existing is not None:
            raise MappingConflictError(
                f"Canonical name already exists: {existing.canonical_name}",
                field_errors=[FieldError('canonical_name', 'already exists', display_name)],
            )
        MappingOperations._check_name_free(session, mapping_type, display_name, None)

        for label in labels:
            MappingOperations._check_label_free(session, mapping_type, label, name_key, None)

        mapping = StandardizedMapping(
            mapping_type=mapping_type,
            canonical_name=display_name,
            name_key=name_key,
        )
        for position, label in enumerate(labels):
            mapping.source_labels.append(
                SourceLabel(mapping_type=mapping_type, position=position, **label)
            )

        session.add(mapping)
        session.flush()

        logger.info(
            f"Created {mapping_type} mapping '{display_name}' "
            f"with {len(labels)} label(s)"
        )
        return mapping

    @staticmethod
    def find_by_id(session: Session, mapping_id: str) -> Optional[StandardizedMapping]:
        """Find mapping by ID."""
        return session.get(StandardizedMapping, mapping_id)

    @staticmethod
    def get_by_id(session: Session, mapping_id: str) -> StandardizedMapping:
        """
        Get mapping by ID.

        Raises:
            MappingNotFoundError: If no mapping has the ID
        """
        mapping = MappingOperations.find_by_id(session, mapping_id)
        if mapping is None:
            raise MappingNotFoundError(f"Mapping not found: {mapping_id}")
        return mapping

    @staticmethod
    def find_by_name(
        session: Session,
        mapping_type: str,
        canonical_name: str,
    ) -> Optional[StandardizedMapping]:
        """Find mapping by normalized canonical name."""
        return session.query(StandardizedMapping).filter_by(
            mapping_type=mapping_type,
            name_key=normalize_key(canonical_name),
        ).first()

    @staticmethod
    def list_mappings(
        session: Session,
        mapping_type: Optional[str] = None,
    ) -> list[StandardizedMapping]:
        """List mappings ordered by creation time."""
        query = session.query(StandardizedMapping)
        if mapping_type is not None:
            query = query.filter_by(mapping_type=mapping_type)
        return query.order_by(
            StandardizedMapping.created_at,
            StandardizedMapping.canonical_name,
        ).all()

    @staticmethod
    def find_label_owner(
        session: Session,
        mapping_type: str,
        label: str,
    ) -> Optional[StandardizedMapping]:
        """Find the mapping owning a raw label (any source)."""
        owned = session.query(SourceLabel).filter_by(
            mapping_type=mapping_type,
            label_key=normalize_key(label),
        ).first()
        if owned is None:
            return None
        return MappingOperations.find_by_id(session, owned.mapping_id)

    @staticmethod
    def add_source_label(
        session: Session,
        mapping_id: str,
        label: LabelInput,
    ) -> StandardizedMapping:
        """
        Add a raw label to an existing mapping.

        Adding a label the mapping already owns for the same source
        increments its frequency instead.

        Raises:
            MappingNotFoundError: If the mapping does not exist
            MappingConflictError: If another mapping owns the label
        """
        mapping = MappingOperations.get_by_id(session, mapping_id)
        data = coerce_label(label)

        for existing in mapping.source_labels:
            if (existing.label_key == data['label_key']
                    and existing.survey_source == data['survey_source']):
                existing.frequency = (existing.frequency or 0) + data['frequency']
                mapping.updated_at = datetime.utcnow()
                session.flush()
                return mapping

        MappingOperations._check_label_free(
            session, mapping.mapping_type, data, mapping.name_key, mapping.mapping_id
        )

        position = max((sl.position or 0 for sl in mapping.source_labels), default=-1) + 1
        mapping.source_labels.append(
            SourceLabel(mapping_type=mapping.mapping_type, position=position, **data)
        )
        mapping.updated_at = datetime.utcnow()
        session.flush()

        logger.info(f"Added label '{data['label']}' to mapping '{mapping.canonical_name}'")
        return mapping

    @staticmethod
    def remove_source_label(
        session: Session,
        mapping_id: str,
        label: str,
        survey_source: Optional[str] = None,
    ) -> StandardizedMapping:
        """
        Remove a raw label from a mapping.

        Without survey_source, every source's entry for the label is removed.

        Raises:
            MappingNotFoundError: If the mapping does not exist
            ValidationError: If the label is absent or is the last one
        """
        mapping = MappingOperations.get_by_id(session, mapping_id)
        key = normalize_key(label)

        matches = [
            sl for sl in mapping.source_labels
            if sl.label_key == key
            and (survey_source is None or sl.survey_source == survey_source)
        ]
        if not matches:
            raise ValidationError(
                f"Label '{label}' is not part of mapping '{mapping.canonical_name}'",
                field_errors=[FieldError('label', 'not in mapping', label)],
            )
        if len(matches) == len(mapping.source_labels):
            raise ValidationError(
                "Cannot remove the last source label; remove the mapping instead",
                field_errors=[FieldError('label', 'last label', label)],
            )

        for sl in matches:
            mapping.source_labels.remove(sl)
        mapping.updated_at = datetime.utcnow()
        session.flush()

        logger.info(f"Removed label '{label}' from mapping '{mapping.canonical_name}'")
        return mapping

    @staticmethod
    def rename_mapping(
        session: Session,
        mapping_id: str,
        canonical_name: str,
    ) -> StandardizedMapping:
        """
        Change a mapping's canonical name.

        Raises:
            MappingNotFoundError: If the mapping does not exist
            MappingConflictError: If another mapping uses the name or owns it
                as a raw label
        """
        mapping = MappingOperations.get_by_id(session, mapping_id)
        display_name = ' '.join(str(canonical_name or '').split())
        if not display_name:
            raise ValidationError(
                "Canonical name must not be empty",
                field_errors=[FieldError('canonical_name', 'empty name', canonical_name)],
            )

        other = MappingOperations.find_by_name(session, mapping.mapping_type, display_name)
        if other is not None and other.mapping_id != mapping.mapping_id:
            raise MappingConflictError(
                f"Canonical name already exists: {other.canonical_name}",
                field_errors=[FieldError('canonical_name', 'already exists', display_name)],
            )
        MappingOperations._check_name_free(
            session, mapping.mapping_type, display_name, mapping.mapping_id
        )

        old_name = mapping.canonical_name
        mapping.canonical_name = display_name
        mapping.name_key = normalize_key(display_name)
        mapping.updated_at = datetime.utcnow()
        session.flush()

        logger.info(f"Renamed mapping '{old_name}' -> '{display_name}'")
        return mapping

    @staticmethod
    def delete_mapping(session: Session, mapping_id: str) -> dict:
        """
        Delete a mapping and its source labels.

        Returns:
            Snapshot of the deleted mapping (see snapshot())

        Raises:
            MappingNotFoundError: If the mapping does not exist
        """
        mapping = MappingOperations.get_by_id(session, mapping_id)
        snapshot = MappingOperations.snapshot(mapping)
        session.delete(mapping)
        session.flush()

        logger.info(f"Deleted mapping '{snapshot['canonical_name']}'")
        return snapshot

    @staticmethod
    def snapshot(mapping: StandardizedMapping) -> dict:
        """Capture a mapping's full state for later restore()."""
        return {
            'mapping_id': mapping.mapping_id,
            'mapping_type': mapping.mapping_type,
            'canonical_name': mapping.canonical_name,
            'name_key': mapping.name_key,
            'created_at': mapping.created_at,
            'updated_at': mapping.updated_at,
            'source_labels': [
                {
                    'label_id': sl.label_id,
                    'label': sl.label,
                    'label_key': sl.label_key,
                    'survey_source': sl.survey_source,
                    'original_name': sl.original_name,
                    'frequency': sl.frequency,
                    'position': sl.position,
                }
                for sl in mapping.source_labels
            ],
        }

    @staticmethod
    def restore(session: Session, snapshot: dict) -> StandardizedMapping:
        """
        Restore a mapping to a snapshot, replacing any current state.

        Used by rollback handlers. The mapping id is preserved; source
        label rows are recreated.
        """
        mapping = MappingOperations.find_by_id(session, snapshot['mapping_id'])
        if mapping is None:
            mapping = StandardizedMapping(
                mapping_id=snapshot['mapping_id'],
                mapping_type=snapshot['mapping_type'],
                created_at=snapshot['created_at'],
            )
            session.add(mapping)
        else:
            # Deletes must hit the database before re-inserting equal keys
            mapping.source_labels.clear()
            session.flush()

        mapping.canonical_name = snapshot['canonical_name']
        mapping.name_key = snapshot['name_key']
        for label in snapshot['source_labels']:
            data = {k: v for k, v in label.items() if k != 'label_id'}
            mapping.source_labels.append(
                SourceLabel(mapping_type=snapshot['mapping_type'], **data)
            )
        session.flush()
        # onupdate would otherwise stamp the restore time
        mapping.updated_at = snapshot['updated_at']
        session.flush()

        logger.debug(f"Restored mapping '{mapping.canonical_name}'")
        return mapping

    @staticmethod
    def build_label_index(session: Session, mapping_type: str) -> dict[str, str]:
        """
        Build the exact-match index for a mapping type.

        Returns:
            Dict of normalized label or canonical name -> mapping_id
        """
        index: dict[str, str] = {}
        for mapping in MappingOperations.list_mappings(session, mapping_type):
            index[mapping.name_key] = mapping.mapping_id
            for sl in mapping.source_labels:
                index.setdefault(sl.label_key, mapping.mapping_id)
        return index

    @staticmethod
    def _merge_duplicates(labels: list[dict]) -> list[dict]:
        """Merge labels repeated for the same source, summing frequency."""
        merged: dict[tuple[str, str], dict] = {}
        for label in labels:
            key = (label['label_key'], label['survey_source'])
            if key in merged:
                merged[key]['frequency'] += label['frequency']
            else:
                merged[key] = dict(label)
        return list(merged.values())

    @staticmethod
    def _check_name_free(
        session: Session,
        mapping_type: str,
        display_name: str,
        own_mapping_id: Optional[str],
    ) -> None:
        """A canonical name must not be a raw label of another mapping."""
        owner = MappingOperations.find_label_owner(session, mapping_type, display_name)
        if owner is not None and owner.mapping_id != own_mapping_id:
            raise MappingConflictError(
                f"'{display_name}' is already a source label of '{owner.canonical_name}'",
                field_errors=[FieldError('canonical_name', 'already mapped', display_name)],
            )

    @staticmethod
    def _check_label_free(
        session: Session,
        mapping_type: str,
        label: dict,
        own_name_key: str,
        own_mapping_id: Optional[str],
    ) -> None:
        """
        Ensure no other mapping owns the label or uses it as its name.

        Raises:
            MappingConflictError: If the label is taken
        """
        owner = MappingOperations.find_label_owner(session, mapping_type, label['label'])
        if owner is None and label['label_key'] != own_name_key:
            owner = session.query(StandardizedMapping).filter_by(
                mapping_type=mapping_type,
                name_key=label['label_key'],
            ).first()

        if owner is not None and owner.mapping_id != own_mapping_id:
            raise MappingConflictError(
                f"Label '{label['label']}' is already mapped to '{owner.canonical_name}'",
                field_errors=[FieldError('source_labels', 'already mapped', label['label'])],
            )


__all__ = ['MappingOperations', 'coerce_label']
