# Path: survey_blend/core/__init__.py
"""
survey_blend Core Package

Core utilities shared by every layer.

Submodules:
    - errors: Error taxonomy
    - logger: IPO-aware logging system
"""

from .errors import (
    SurveyBlendError,
    FieldError,
    ValidationError,
    MappingConflictError,
    MappingNotFoundError,
    ResolutionMiss,
    ConcurrencyError,
    VerificationError,
    RollbackFailure,
    AtomicityError,
)

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
