# Path: survey_blend/process/matcher/resolver.py
"""
Mapping Resolver

Owns the canonical-name registry and answers "what is this raw label
called canonically?".

Resolution order for (raw label, source):
1. learned correction scoped to the source
2. learned correction with global scope
3. exact normalized match on a source label or canonical name
4. None (unmapped)

A learned hit only counts when its canonical name is backed by an
existing Standardized Mapping, so resolve() never returns a name that
has no mapping behind it.

Lookups go through an in-memory index per mapping type, rebuilt lazily
from the database after any mutation invalidates it.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from survey_blend.config_loader import ConfigLoader
from survey_blend.constants import GLOBAL_SOURCE_SCOPE, MappingType
from survey_blend.core.logger.ipo_logging import get_process_logger
from survey_blend.database.models.base import session_scope
from survey_blend.database.models.learned_mappings import LearnedMapping
from survey_blend.database.models.standardized_mappings import (
    StandardizedMapping,
    normalize_key,
)
from survey_blend.database.operations.learned_ops import LearnedOperations
from survey_blend.database.operations.mapping_ops import LabelInput, MappingOperations
from survey_blend.process.matcher.models import SuggestionCandidate
from survey_blend.process.matcher.suggestions import suggest


@dataclass
class ResolutionIndex:
    """
    Flat lookup tables for one mapping type.

    Attributes:
        labels: normalized label or canonical name -> mapping_id
        names: mapping_id -> canonical name
        name_ids: normalized canonical name -> mapping_id
        learned: (normalized label, source scope) -> canonical name
    """
    labels: dict[str, str] = field(default_factory=dict)
    names: dict[str, str] = field(default_factory=dict)
    name_ids: dict[str, str] = field(default_factory=dict)
    learned: dict[tuple[str, str], str] = field(default_factory=dict)


def _type_value(mapping_type) -> str:
    return MappingType(mapping_type).value


class MappingResolver:
    """
    Canonical-name registry with cached resolution.

    Example:
        resolver = MappingResolver()
        resolver.create_mapping('specialty', 'Cardiology', ['Cardio', 'Cardiology'])
        resolver.resolve('CARDIO', 'SourceA')  # 'Cardiology'
        resolver.resolve('Dermatology', 'SourceA')  # None
    """

    def __init__(self, config: Optional[ConfigLoader] = None):
        self.config = config or ConfigLoader()
        self.logger = get_process_logger('matcher.resolver')
        self._indexes: dict[str, ResolutionIndex] = {}

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------

    def invalidate(self, mapping_type=None) -> None:
        """Drop cached indexes (one type, or all)."""
        if mapping_type is None:
            self._indexes.clear()
        else:
            self._indexes.pop(_type_value(mapping_type), None)
        self.logger.debug(f"Resolution index invalidated ({mapping_type or 'all'})")

    def index(self, mapping_type=MappingType.SPECIALTY) -> ResolutionIndex:
        """Get the resolution index for a type, building it if needed."""
        type_value = _type_value(mapping_type)
        cached = self._indexes.get(type_value)
        if cached is not None:
            return cached

        index = ResolutionIndex()
        with session_scope() as session:
            for mapping in MappingOperations.list_mappings(session, type_value):
                index.names[mapping.mapping_id] = mapping.canonical_name
                index.name_ids[mapping.name_key] = mapping.mapping_id
            index.labels = MappingOperations.build_label_index(session, type_value)
            index.learned = LearnedOperations.build_index(session, type_value)

        self._indexes[type_value] = index
        self.logger.debug(
            f"Built {type_value} index: {len(index.names)} mapping(s), "
            f"{len(index.labels)} key(s), {len(index.learned)} learned"
        )
        return index

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(
        self,
        raw_label: Optional[str],
        survey_source: Optional[str] = None,
        mapping_type=MappingType.SPECIALTY,
    ) -> Optional[str]:
        """
        Resolve a raw label to its canonical name.

        Args:
            raw_label: Label exactly as it appears in the source
            survey_source: Source the label came from
            mapping_type: Vocabulary to resolve in

        Returns:
            Canonical name backed by an existing mapping, or None
        """
        if raw_label is None:
            return None
        key = normalize_key(raw_label)
        if not key:
            return None

        index = self.index(mapping_type)

        scopes = (survey_source, GLOBAL_SOURCE_SCOPE) if survey_source else (GLOBAL_SOURCE_SCOPE,)
        for scope in scopes:
            learned_name = index.learned.get((key, scope))
            if learned_name:
                mapping_id = index.name_ids.get(normalize_key(learned_name))
                if mapping_id is not None:
                    return index.names[mapping_id]

        mapping_id = index.labels.get(key)
        if mapping_id is not None:
            return index.names[mapping_id]
        return None

    def canonical_names(self, mapping_type=MappingType.SPECIALTY) -> list[str]:
        """Canonical names of one type, in creation order."""
        return list(self.index(mapping_type).names.values())

    def suggest(
        self,
        raw_label: str,
        threshold: Optional[float] = None,
        mapping_type=MappingType.SPECIALTY,
        unmapped_labels: Iterable[str] = (),
        survey_source: Optional[str] = None,
    ) -> list[SuggestionCandidate]:
        """
        Rank canonical-name candidates for a raw label.

        Args:
            raw_label: Label to find a name for
            threshold: Similarity to exceed (default: configured threshold)
            mapping_type: Vocabulary
            unmapped_labels: Other currently-unmapped labels to compare with
            survey_source: Source of the label, for scoped learned lookups
        """
        if threshold is None:
            threshold = self.config.get('suggestion_threshold')
        index = self.index(mapping_type)
        return suggest(
            raw_label,
            index.names.values(),
            threshold,
            unmapped_labels=unmapped_labels,
            learned=index.learned,
            survey_source=survey_source,
        )

    def get_mapping(self, mapping_id: str) -> StandardizedMapping:
        """
        Get a mapping by ID.

        Raises:
            MappingNotFoundError: If no mapping has the ID
        """
        with session_scope() as session:
            return MappingOperations.get_by_id(session, mapping_id)

    def find_mapping(self, mapping_type, canonical_name: str) -> Optional[StandardizedMapping]:
        """Find a mapping by canonical name."""
        with session_scope() as session:
            return MappingOperations.find_by_name(session, _type_value(mapping_type), canonical_name)

    def list_mappings(self, mapping_type=None) -> list[StandardizedMapping]:
        """List mappings, optionally for one type."""
        type_value = _type_value(mapping_type) if mapping_type is not None else None
        with session_scope() as session:
            return MappingOperations.list_mappings(session, type_value)

    def list_learned(self, mapping_type=None) -> list[LearnedMapping]:
        """List learned mappings, optionally for one type."""
        type_value = _type_value(mapping_type) if mapping_type is not None else None
        with session_scope() as session:
            return LearnedOperations.list_learned(session, type_value)

    # ------------------------------------------------------------------
    # Mutations (each invalidates the index of its type)
    # ------------------------------------------------------------------

    def create_mapping(
        self,
        mapping_type,
        canonical_name: str,
        source_labels: Iterable[LabelInput],
    ) -> StandardizedMapping:
        """Create a mapping. See MappingOperations.create_mapping."""
        type_value = _type_value(mapping_type)
        try:
            with session_scope() as session:
                return MappingOperations.create_mapping(
                    session, type_value, canonical_name, list(source_labels)
                )
        finally:
            self.invalidate(type_value)

    def add_source_label(self, mapping_id: str, label: LabelInput) -> StandardizedMapping:
        """Add a raw label to a mapping."""
        return self.add_source_labels(mapping_id, [label])

    def add_source_labels(
        self,
        mapping_id: str,
        labels: Iterable[LabelInput],
    ) -> StandardizedMapping:
        """Add several raw labels in one transaction; one conflict adds none."""
        try:
            with session_scope() as session:
                mapping = MappingOperations.get_by_id(session, mapping_id)
                for label in labels:
                    mapping = MappingOperations.add_source_label(session, mapping_id, label)
                return mapping
        finally:
            self.invalidate()

    def remove_source_label(
        self,
        mapping_id: str,
        label: str,
        survey_source: Optional[str] = None,
    ) -> StandardizedMapping:
        """Remove a raw label from a mapping (never the last one)."""
        try:
            with session_scope() as session:
                return MappingOperations.remove_source_label(
                    session, mapping_id, label, survey_source
                )
        finally:
            self.invalidate()

    def rename_mapping(self, mapping_id: str, canonical_name: str) -> StandardizedMapping:
        """Change a mapping's canonical name."""
        try:
            with session_scope() as session:
                return MappingOperations.rename_mapping(session, mapping_id, canonical_name)
        finally:
            self.invalidate()

    def remove_mapping(self, mapping_id: str) -> dict:
        """
        Delete a mapping.

        Returns:
            Snapshot usable with restore_mapping()
        """
        try:
            with session_scope() as session:
                return MappingOperations.delete_mapping(session, mapping_id)
        finally:
            self.invalidate()

    def snapshot_mapping(self, mapping_id: str) -> dict:
        """Capture a mapping's current state."""
        with session_scope() as session:
            return MappingOperations.snapshot(MappingOperations.get_by_id(session, mapping_id))

    def restore_mapping(self, snapshot: dict) -> StandardizedMapping:
        """Restore a mapping captured by remove_mapping() or snapshot_mapping()."""
        try:
            with session_scope() as session:
                return MappingOperations.restore(session, snapshot)
        finally:
            self.invalidate(snapshot['mapping_type'])

    def learn(
        self,
        mapping_type,
        label: str,
        canonical_name: str,
        source_scope: Optional[str] = None,
    ) -> LearnedMapping:
        """Remember a single correction."""
        type_value = _type_value(mapping_type)
        try:
            with session_scope() as session:
                return LearnedOperations.upsert(
                    session, type_value, label, canonical_name, source_scope
                )
        finally:
            self.invalidate(type_value)

    def forget_learned(self, learned_id: str) -> bool:
        """Delete one learned mapping."""
        try:
            with session_scope() as session:
                return LearnedOperations.delete(session, learned_id)
        finally:
            self.invalidate()

    def clear_learned(self, mapping_type=None) -> list[dict]:
        """
        Delete learned mappings in bulk.

        Returns:
            Snapshots usable with restore_learned()
        """
        type_value = _type_value(mapping_type) if mapping_type is not None else None
        try:
            with session_scope() as session:
                return LearnedOperations.clear(session, type_value)
        finally:
            self.invalidate(type_value)

    def restore_learned(self, snapshots: list[dict]) -> None:
        """Re-insert learned mappings removed by clear_learned()."""
        try:
            with session_scope() as session:
                LearnedOperations.restore_all(session, snapshots)
        finally:
            self.invalidate()


__all__ = ['MappingResolver', 'ResolutionIndex']
