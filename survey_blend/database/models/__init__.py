# Path: survey_blend/database/models/__init__.py
"""
Database Models for survey_blend.

Provides SQLAlchemy models for storing:
- Standardized mappings and their source labels
- Learned mappings (single corrections)
- Normalized records (long-format survey data)
"""

from survey_blend.database.models.base import (
    Base,
    initialize_engine,
    get_engine,
    get_session,
    session_scope,
    create_all_tables,
    drop_all_tables,
    reset_engine,
)
from survey_blend.database.models.standardized_mappings import (
    StandardizedMapping,
    SourceLabel,
    normalize_key,
)
from survey_blend.database.models.learned_mappings import LearnedMapping
from survey_blend.database.models.normalized_records import NormalizedRecord


__all__ = [
    'Base',
    'initialize_engine',
    'get_engine',
    'get_session',
    'session_scope',
    'create_all_tables',
    'drop_all_tables',
    'reset_engine',
    'StandardizedMapping',
    'SourceLabel',
    'normalize_key',
    'LearnedMapping',
    'NormalizedRecord',
]
