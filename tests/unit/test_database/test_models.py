# Path: tests/unit/test_database/test_models.py
"""
Unit tests for database models.

Tests StandardizedMapping, SourceLabel, LearnedMapping and
NormalizedRecord against an in-memory SQLite database.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from survey_blend.database.models import (
    LearnedMapping,
    NormalizedRecord,
    SourceLabel,
    StandardizedMapping,
    normalize_key,
    session_scope,
)
from survey_blend.database.models.base import get_connection_info, get_database_type


def make_mapping(name='Cardiology', labels=('Cardio',), mapping_type='specialty'):
    mapping = StandardizedMapping(
        mapping_type=mapping_type,
        canonical_name=name,
        name_key=normalize_key(name),
    )
    for position, label in enumerate(labels):
        mapping.source_labels.append(SourceLabel(
            mapping_type=mapping_type,
            label=label,
            label_key=normalize_key(label),
            survey_source='SourceA',
            position=position,
        ))
    return mapping


class TestNormalizeKey:
    """Tests for normalize_key."""

    def test_case_and_whitespace(self):
        assert normalize_key('  Family   Medicine ') == 'family medicine'
        assert normalize_key('CARDIOLOGY') == 'cardiology'


class TestEngine:
    """Engine bookkeeping."""

    def test_connection_info(self, db):
        info = get_connection_info()

        assert info['status'] == 'connected'
        assert info['type'] == 'sqlite'
        assert get_database_type() == 'sqlite'


class TestStandardizedMapping:
    """Tests for StandardizedMapping model."""

    def test_create_with_labels(self, db_session):
        mapping = make_mapping(labels=('Cardio', 'Cardiology'))
        db_session.add(mapping)
        db_session.flush()

        assert mapping.mapping_id is not None
        assert mapping.created_at is not None
        assert [sl.label for sl in mapping.source_labels] == ['Cardio', 'Cardiology']
        assert all(sl.mapping_id == mapping.mapping_id for sl in mapping.source_labels)

    def test_to_dict(self, db_session):
        mapping = make_mapping()
        db_session.add(mapping)
        db_session.flush()

        data = mapping.to_dict()

        assert data['canonical_name'] == 'Cardiology'
        assert data['mapping_type'] == 'specialty'
        assert data['source_labels'][0]['label'] == 'Cardio'
        assert data['source_labels'][0]['survey_source'] == 'SourceA'

    def test_delete_cascades_to_labels(self, db_session):
        mapping = make_mapping(labels=('Cardio', 'Cardiology'))
        db_session.add(mapping)
        db_session.flush()

        db_session.delete(mapping)
        db_session.flush()

        assert db_session.query(SourceLabel).count() == 0

    def test_name_unique_per_type(self, db):
        with session_scope() as session:
            session.add(make_mapping('Cardiology', ('Cardio',)))

        with pytest.raises(IntegrityError):
            with session_scope() as session:
                session.add(make_mapping('Cardiology', ('Cardiac',)))

    def test_same_name_in_other_type(self, db):
        with session_scope() as session:
            session.add(make_mapping('West', ('W',), mapping_type='region'))
            session.add(make_mapping('West', ('Western',), mapping_type='specialty'))

        with session_scope() as session:
            assert session.query(StandardizedMapping).count() == 2


class TestLearnedMapping:
    """Tests for LearnedMapping model."""

    def test_default_scope(self, db_session):
        learned = LearnedMapping(
            mapping_type='specialty',
            label='Peds Cardio',
            label_key='peds cardio',
            canonical_name='Pediatric Cardiology',
        )
        db_session.add(learned)
        db_session.flush()

        assert learned.source_scope == '*'
        assert learned.to_dict()['canonical_name'] == 'Pediatric Cardiology'
        assert 'Peds Cardio' in repr(learned)


class TestNormalizedRecord:
    """Tests for NormalizedRecord model."""

    def test_round_trip(self, db_session):
        record = NormalizedRecord(
            survey_source='SourceA',
            survey_year=2023,
            source_row_index=0,
            original_data={'Specialty': 'Cardio', 'tcc_p50': '400000'},
            specialty='Cardiology',
            raw_specialty='Cardio',
            provider_type='Physician',
            raw_provider_type='Physician',
            region='West',
            raw_region='West',
            variable='Total Cash Compensation',
            raw_variable='tcc',
            n_incumbents=10,
            p50=400000,
        )
        db_session.add(record)
        db_session.flush()

        stored = db_session.get(NormalizedRecord, record.record_id)

        assert stored.original_data == {'Specialty': 'Cardio', 'tcc_p50': '400000'}
        assert stored.p50 == 400000
        assert stored.p90 is None
        assert 'Cardiology' in repr(stored)
