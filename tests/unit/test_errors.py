# Path: tests/unit/test_errors.py
"""
Unit tests for the error taxonomy.
"""

import pytest

from survey_blend.core.errors import (
    AtomicityError,
    FieldError,
    MappingConflictError,
    MappingNotFoundError,
    ResolutionMiss,
    RollbackFailure,
    SurveyBlendError,
    ValidationError,
)


class TestValidationError:
    """Tests for ValidationError."""

    def test_fields_lists_failed_fields(self):
        error = ValidationError(
            "Missing required field(s): region",
            field_errors=[FieldError('region', 'missing or empty')],
            row_index=4,
        )

        assert error.fields == ['region']
        assert error.row_index == 4
        assert str(error) == "Missing required field(s): region"

    def test_to_dict(self):
        error = ValidationError("bad", field_errors=[FieldError('label', 'empty label', '')])
        data = error.to_dict()

        assert data['message'] == 'bad'
        assert data['field_errors'][0]['field'] == 'label'

    def test_conflict_is_validation_error(self):
        assert issubclass(MappingConflictError, ValidationError)

    def test_not_found_is_lookup_error(self):
        with pytest.raises(LookupError):
            raise MappingNotFoundError("missing")
        assert issubclass(MappingNotFoundError, SurveyBlendError)


class TestResolutionMiss:
    """Tests for ResolutionMiss."""

    def test_is_hashable_value(self):
        a = ResolutionMiss('specialty', 'Cardio', 'SourceA', 2)
        b = ResolutionMiss('specialty', 'Cardio', 'SourceA', 2)

        assert a == b
        assert len({a, b}) == 1


class TestAtomicityError:
    """Tests for AtomicityError."""

    def test_simple_failure(self):
        cause = RuntimeError('boom')
        error = AtomicityError('create-mapping', 'recanonicalize', cause, ['create-mapping'])

        assert not error.is_compound
        assert error.failed_step == 'recanonicalize'
        assert error.cause is cause
        assert 'boom' in str(error)

    def test_compound_failure_names_failed_rollbacks(self):
        error = AtomicityError(
            'ingest', 'store-records', RuntimeError('boom'), [],
            [RollbackFailure('remove-previous-records', RuntimeError('disk'))],
        )

        assert error.is_compound
        assert 'rollback failed for: remove-previous-records' in str(error)
        assert error.to_dict()['rollback_failures'][0]['step'] == 'remove-previous-records'
