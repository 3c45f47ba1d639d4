# Path: survey_blend/database/operations/__init__.py
"""
Database Operations for survey_blend.

Static-method operation classes; every method takes a session.
"""

from survey_blend.database.operations.mapping_ops import MappingOperations, coerce_label
from survey_blend.database.operations.learned_ops import LearnedOperations
from survey_blend.database.operations.record_ops import (
    RecordOperations,
    DIMENSION_COLUMNS,
)

__all__ = [
    'MappingOperations',
    'coerce_label',
    'LearnedOperations',
    'RecordOperations',
    'DIMENSION_COLUMNS',
]
