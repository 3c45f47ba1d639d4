# Path: tests/unit/test_database/test_operations.py
"""
Unit tests for database operations.

Tests MappingOperations, LearnedOperations and RecordOperations.
"""

import pytest

from survey_blend.core.errors import (
    MappingConflictError,
    MappingNotFoundError,
    ValidationError,
)
from survey_blend.database.operations import (
    LearnedOperations,
    MappingOperations,
    RecordOperations,
)
from survey_blend.database.models import session_scope
from survey_blend.database.operations.mapping_ops import coerce_label


def record_row(source='SourceA', year=2023, raw_specialty='Cardio', specialty=None, **extra):
    row = {
        'survey_source': source,
        'survey_year': year,
        'source_row_index': 0,
        'original_data': {'specialty': raw_specialty},
        'specialty': specialty or raw_specialty,
        'raw_specialty': raw_specialty,
        'provider_type': 'Physician',
        'raw_provider_type': 'Physician',
        'region': 'West',
        'raw_region': 'West',
        'variable': 'Total Cash Compensation',
        'raw_variable': 'tcc',
        'n_incumbents': 10,
        'p50': 400000,
    }
    row.update(extra)
    return row


class TestCoerceLabel:
    """Tests for coerce_label."""

    def test_string(self):
        data = coerce_label('  Cardio  ')

        assert data['label'] == 'Cardio'
        assert data['label_key'] == 'cardio'
        assert data['survey_source'] == ''
        assert data['frequency'] == 0

    def test_dict(self):
        data = coerce_label({'label': 'Cardio', 'survey_source': 'SourceA', 'frequency': 3})

        assert data['survey_source'] == 'SourceA'
        assert data['frequency'] == 3

    def test_empty(self):
        with pytest.raises(ValidationError) as excinfo:
            coerce_label('   ')

        assert excinfo.value.fields == ['label']


class TestMappingOperations:
    """Tests for MappingOperations class."""

    def test_create_mapping(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio', 'Cardiology'],
        )

        assert mapping.mapping_id is not None
        assert mapping.canonical_name == 'Cardiology'
        assert [sl.label for sl in mapping.source_labels] == ['Cardio', 'Cardiology']

    def test_duplicate_labels_merged(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology',
            [{'label': 'Cardio', 'frequency': 2}, {'label': 'cardio', 'frequency': 3}],
        )

        assert len(mapping.source_labels) == 1
        assert mapping.source_labels[0].frequency == 5

    def test_create_requires_labels(self, db_session):
        with pytest.raises(ValidationError) as excinfo:
            MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', [])

        assert excinfo.value.fields == ['source_labels']

    def test_create_requires_name(self, db_session):
        with pytest.raises(ValidationError):
            MappingOperations.create_mapping(db_session, 'specialty', '  ', ['Cardio'])

    def test_name_conflict_ignores_case(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', ['Cardio'])

        with pytest.raises(MappingConflictError):
            MappingOperations.create_mapping(db_session, 'specialty', 'CARDIOLOGY', ['Cardiac'])

    def test_label_owned_by_other_mapping(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', ['Cardio'])

        with pytest.raises(MappingConflictError) as excinfo:
            MappingOperations.create_mapping(db_session, 'specialty', 'Heart', ['cardio'])

        assert 'Cardiology' in str(excinfo.value)

    def test_label_matching_other_canonical_name(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', ['Cardio'])

        with pytest.raises(MappingConflictError):
            MappingOperations.create_mapping(db_session, 'specialty', 'Heart', ['Cardiology'])

    def test_name_matching_other_mapping_label(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', ['Cardio'])

        with pytest.raises(MappingConflictError) as excinfo:
            MappingOperations.create_mapping(db_session, 'specialty', 'cardio', ['Heart'])

        assert excinfo.value.fields == ['canonical_name']

    def test_types_are_separate_namespaces(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'West', ['W'])
        region = MappingOperations.create_mapping(db_session, 'region', 'West', ['W'])

        assert region.mapping_type == 'region'

    def test_find_by_name_and_label_owner(self, db_session):
        created = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )

        assert MappingOperations.find_by_name(db_session, 'specialty', ' cardiology ') is created
        assert MappingOperations.find_label_owner(db_session, 'specialty', 'CARDIO') is created
        assert MappingOperations.find_label_owner(db_session, 'region', 'Cardio') is None

    def test_get_by_id_not_found(self, db_session):
        with pytest.raises(MappingNotFoundError):
            MappingOperations.get_by_id(db_session, 'nonexistent-uuid')

    def test_add_source_label(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )

        MappingOperations.add_source_label(db_session, mapping.mapping_id, 'Cardiac')

        assert [sl.label for sl in mapping.source_labels] == ['Cardio', 'Cardiac']

    def test_add_existing_label_increments_frequency(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', [{'label': 'Cardio', 'frequency': 1}],
        )

        MappingOperations.add_source_label(
            db_session, mapping.mapping_id, {'label': 'Cardio', 'frequency': 4},
        )

        assert len(mapping.source_labels) == 1
        assert mapping.source_labels[0].frequency == 5

    def test_add_label_conflict(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', ['Cardio'])
        other = MappingOperations.create_mapping(db_session, 'specialty', 'Oncology', ['Onc'])

        with pytest.raises(MappingConflictError):
            MappingOperations.add_source_label(db_session, other.mapping_id, 'Cardio')

    def test_remove_source_label(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio', 'Cardiac'],
        )

        MappingOperations.remove_source_label(db_session, mapping.mapping_id, 'cardio')

        assert [sl.label for sl in mapping.source_labels] == ['Cardiac']

    def test_remove_last_label_rejected(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )

        with pytest.raises(ValidationError):
            MappingOperations.remove_source_label(db_session, mapping.mapping_id, 'Cardio')

    def test_remove_absent_label_rejected(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio', 'Cardiac'],
        )

        with pytest.raises(ValidationError):
            MappingOperations.remove_source_label(db_session, mapping.mapping_id, 'Heart')

    def test_rename_mapping(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )

        MappingOperations.rename_mapping(db_session, mapping.mapping_id, 'Cardiovascular Disease')

        assert mapping.canonical_name == 'Cardiovascular Disease'
        assert mapping.name_key == 'cardiovascular disease'

    def test_rename_conflict(self, db_session):
        MappingOperations.create_mapping(db_session, 'specialty', 'Cardiology', ['Cardio'])
        other = MappingOperations.create_mapping(db_session, 'specialty', 'Oncology', ['Onc'])

        with pytest.raises(MappingConflictError):
            MappingOperations.rename_mapping(db_session, other.mapping_id, 'cardiology')

    def test_rename_to_other_mapping_label(self, db_session):
        cardiology = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )
        heart = MappingOperations.create_mapping(db_session, 'specialty', 'Heart', ['Cardiac'])

        with pytest.raises(MappingConflictError):
            MappingOperations.rename_mapping(db_session, heart.mapping_id, 'Cardio')

        index = MappingOperations.build_label_index(db_session, 'specialty')
        assert index['cardio'] == cardiology.mapping_id
        assert heart.canonical_name == 'Heart'

    def test_rename_to_own_label(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio', 'Heart'],
        )

        MappingOperations.rename_mapping(db_session, mapping.mapping_id, 'Heart')

        assert mapping.canonical_name == 'Heart'

    def test_delete_and_restore(self, db):
        with session_scope() as session:
            mapping = MappingOperations.create_mapping(
                session, 'specialty', 'Cardiology', ['Cardio', 'Cardiac'],
            )
            mapping_id = mapping.mapping_id

        with session_scope() as session:
            snapshot = MappingOperations.delete_mapping(session, mapping_id)

        with session_scope() as session:
            assert MappingOperations.find_by_id(session, mapping_id) is None
            restored = MappingOperations.restore(session, snapshot)

            assert restored.mapping_id == mapping_id
            assert [sl.label for sl in restored.source_labels] == ['Cardio', 'Cardiac']

    def test_restore_in_place(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )
        snapshot = MappingOperations.snapshot(mapping)
        MappingOperations.add_source_label(db_session, mapping.mapping_id, 'Cardiac')
        MappingOperations.rename_mapping(db_session, mapping.mapping_id, 'Heart')

        restored = MappingOperations.restore(db_session, snapshot)

        assert restored.canonical_name == 'Cardiology'
        assert [sl.label for sl in restored.source_labels] == ['Cardio']

    def test_build_label_index(self, db_session):
        mapping = MappingOperations.create_mapping(
            db_session, 'specialty', 'Cardiology', ['Cardio'],
        )

        index = MappingOperations.build_label_index(db_session, 'specialty')

        assert index == {'cardiology': mapping.mapping_id, 'cardio': mapping.mapping_id}


class TestLearnedOperations:
    """Tests for LearnedOperations class."""

    def test_upsert_creates_then_replaces(self, db_session):
        first = LearnedOperations.upsert(db_session, 'specialty', 'Peds Cardio', 'Cardiology')
        second = LearnedOperations.upsert(
            db_session, 'specialty', 'peds  cardio', 'Pediatric Cardiology',
        )

        assert first.learned_id == second.learned_id
        assert second.canonical_name == 'Pediatric Cardiology'
        assert len(LearnedOperations.list_learned(db_session)) == 1

    def test_scopes_are_separate(self, db_session):
        LearnedOperations.upsert(db_session, 'specialty', 'IM', 'Internal Medicine')
        LearnedOperations.upsert(
            db_session, 'specialty', 'IM', 'Interventional Medicine', source_scope='SourceB',
        )

        index = LearnedOperations.build_index(db_session, 'specialty')

        assert index == {
            ('im', '*'): 'Internal Medicine',
            ('im', 'SourceB'): 'Interventional Medicine',
        }

    def test_upsert_validates(self, db_session):
        with pytest.raises(ValidationError) as excinfo:
            LearnedOperations.upsert(db_session, 'specialty', '', '')

        assert excinfo.value.fields == ['label', 'canonical_name']

    def test_delete(self, db_session):
        learned = LearnedOperations.upsert(db_session, 'specialty', 'Peds Cardio', 'Cardiology')

        assert LearnedOperations.delete(db_session, learned.learned_id) is True
        assert LearnedOperations.delete(db_session, learned.learned_id) is False

    def test_clear_and_restore(self, db):
        with session_scope() as session:
            LearnedOperations.upsert(session, 'specialty', 'Peds Cardio', 'Cardiology')
            LearnedOperations.upsert(session, 'region', 'W', 'West')

        with session_scope() as session:
            snapshots = LearnedOperations.clear(session, 'specialty')

        assert len(snapshots) == 1

        with session_scope() as session:
            remaining = [lm.mapping_type for lm in LearnedOperations.list_learned(session)]
            LearnedOperations.restore_all(session, snapshots)

        with session_scope() as session:
            assert remaining == ['region']
            assert len(LearnedOperations.list_learned(session, 'specialty')) == 1


class TestRecordOperations:
    """Tests for RecordOperations class."""

    def test_insert_and_find(self, db_session):
        ids = RecordOperations.insert_records(db_session, [record_row(), record_row('SourceB')])

        assert len(ids) == 2
        assert len(RecordOperations.find_by_ids(db_session, ids)) == 2
        assert RecordOperations.find_by_ids(db_session, []) == []
        assert RecordOperations.count_records(db_session) == 2

    def test_delete_by_survey(self, db_session):
        RecordOperations.insert_records(db_session, [
            record_row('SourceA', 2023),
            record_row('SourceA', 2024),
            record_row('SourceB', 2023),
        ])

        snapshots = RecordOperations.delete_by_survey(db_session, 'SourceA', 2023)

        assert len(snapshots) == 1
        assert snapshots[0]['survey_year'] == 2023
        assert RecordOperations.count_records(db_session) == 2

    def test_delete_by_ids_returns_reinsertable_snapshots(self, db):
        with session_scope() as session:
            ids = RecordOperations.insert_records(session, [record_row()])

        with session_scope() as session:
            snapshots = RecordOperations.delete_by_ids(session, ids)
            assert RecordOperations.count_records(session) == 0

        with session_scope() as session:
            restored = RecordOperations.insert_records(session, snapshots)

        assert restored == ids

    def test_query_filters(self, db_session):
        RecordOperations.insert_records(db_session, [
            record_row('SourceB', raw_specialty='Cardiology'),
            record_row('SourceA', raw_specialty='Cardio', specialty='Cardiology'),
            record_row('SourceA', raw_specialty='Oncology', source_row_index=1),
            record_row('SourceA', raw_variable='wrvu', variable='Work RVUs'),
        ])

        rows = RecordOperations.query_records(
            db_session,
            variable='Total Cash Compensation',
            specialties=['Cardiology'],
        )

        assert [r.survey_source for r in rows] == ['SourceA', 'SourceB']
        assert RecordOperations.query_records(db_session, survey_years=[2020]) == []

    def test_label_inventory(self, db_session):
        RecordOperations.insert_records(db_session, [
            record_row('SourceA', raw_specialty='Cardio'),
            record_row('SourceA', raw_specialty='Cardio', raw_variable='wrvu'),
            record_row('SourceB', raw_specialty='Cardiology'),
        ])

        inventory = RecordOperations.label_inventory(db_session, 'specialty')

        assert inventory == [
            ('Cardio', 'Cardio', 'SourceA', 2),
            ('Cardiology', 'Cardiology', 'SourceB', 1),
        ]

    def test_referenced_values_and_raw_lookup(self, db_session):
        RecordOperations.insert_records(db_session, [
            record_row(raw_specialty='Cardio', specialty='Cardiology'),
            record_row(raw_specialty='Onc'),
        ])

        assert RecordOperations.referenced_values(db_session, 'specialty') == {'Cardiology', 'Onc'}

        matches = RecordOperations.records_with_raw_labels(db_session, 'specialty', ['Cardio'])

        assert [r.specialty for r in matches] == ['Cardiology']
        assert RecordOperations.records_with_raw_labels(db_session, 'specialty', []) == []
