# Path: survey_blend/core/errors.py
"""
Error Handling System

Error taxonomy for the survey blending core.

This module defines:
- Field-level validation detail (FieldError)
- Validation failures for rows and mapping mutations
- Resolution misses (an expected outcome, not an exception)
- Concurrency and atomicity failures raised by the consistency layer
"""

from dataclasses import dataclass
from typing import Any, Optional


# ==============================================================================
# BASE
# ==============================================================================

class SurveyBlendError(Exception):
    """Base class for all survey_blend errors."""


# ==============================================================================
# VALIDATION
# ==============================================================================

@dataclass
class FieldError:
    """
    A single field that failed validation.

    Attributes:
        field: Logical field name (e.g. 'region')
        message: Human-readable reason
        value: Offending value, if any
    """
    field: str
    message: str
    value: Any = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'field': self.field,
            'message': self.message,
            'value': self.value,
        }


class ValidationError(SurveyBlendError):
    """
    Malformed or incomplete input.

    Raised for raw rows missing required fields and for invalid mapping
    mutations. Per-row failures are collected by the normalizer rather
    than aborting a batch.
    """

    def __init__(
        self,
        message: str,
        field_errors: Optional[list[FieldError]] = None,
        row_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field_errors = list(field_errors or [])
        self.row_index = row_index

    @property
    def fields(self) -> list[str]:
        """Names of the fields that failed."""
        return [fe.field for fe in self.field_errors]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'message': self.message,
            'row_index': self.row_index,
            'field_errors': [fe.to_dict() for fe in self.field_errors],
        }


class MappingConflictError(ValidationError):
    """A label or canonical name is already owned by another mapping."""


class MappingNotFoundError(SurveyBlendError, LookupError):
    """Referenced mapping id does not exist."""


# ==============================================================================
# RESOLUTION
# ==============================================================================

@dataclass(frozen=True)
class ResolutionMiss:
    """
    A raw label that currently has no canonical name.

    Not an error: callers surface these as "unmapped" for manual action.

    Attributes:
        mapping_type: Vocabulary the label belongs to
        raw_label: Label exactly as it appeared in the source
        survey_source: Source that produced the label
        frequency: Number of rows carrying the label
    """
    mapping_type: str
    raw_label: str
    survey_source: Optional[str] = None
    frequency: int = 1

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'mapping_type': self.mapping_type,
            'raw_label': self.raw_label,
            'survey_source': self.survey_source,
            'frequency': self.frequency,
        }


# ==============================================================================
# CONCURRENCY
# ==============================================================================

class ConcurrencyError(SurveyBlendError):
    """A lock or queued transaction could not be satisfied."""


class VerificationError(SurveyBlendError):
    """A post-condition check still failed after every allowed attempt."""


# ==============================================================================
# ATOMICITY
# ==============================================================================

@dataclass
class RollbackFailure:
    """
    A rollback handler that raised.

    Attributes:
        step: Name of the step whose rollback failed
        error: Exception raised by the rollback handler
    """
    step: str
    error: BaseException

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'step': self.step,
            'error': f"{type(self.error).__name__}: {self.error}",
        }


class AtomicityError(SurveyBlendError):
    """
    A multi-step operation failed after partial execution.

    Rollback was attempted for every completed step. When any rollback
    handler failed, the error is compound and the store may need operator
    attention.
    """

    def __init__(
        self,
        operation_name: str,
        failed_step: str,
        cause: BaseException,
        rolled_back: Optional[list[str]] = None,
        rollback_failures: Optional[list[RollbackFailure]] = None,
    ):
        self.operation_name = operation_name
        self.failed_step = failed_step
        self.cause = cause
        self.rolled_back = list(rolled_back or [])
        self.rollback_failures = list(rollback_failures or [])

        message = (
            f"Atomic operation '{operation_name}' failed at step "
            f"'{failed_step}': {cause}"
        )
        if self.rollback_failures:
            failed = ', '.join(rf.step for rf in self.rollback_failures)
            message += f" (rollback failed for: {failed})"
        super().__init__(message)

    @property
    def is_compound(self) -> bool:
        """True when at least one rollback handler failed."""
        return bool(self.rollback_failures)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'operation_name': self.operation_name,
            'failed_step': self.failed_step,
            'cause': f"{type(self.cause).__name__}: {self.cause}",
            'rolled_back': self.rolled_back,
            'rollback_failures': [rf.to_dict() for rf in self.rollback_failures],
        }


__all__ = [
    'SurveyBlendError',
    'FieldError',
    'ValidationError',
    'MappingConflictError',
    'MappingNotFoundError',
    'ResolutionMiss',
    'ConcurrencyError',
    'VerificationError',
    'RollbackFailure',
    'AtomicityError',
]
