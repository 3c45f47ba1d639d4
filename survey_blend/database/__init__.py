# Path: survey_blend/database/__init__.py
"""
survey_blend Database Module

Stores the mapping registry, learned mappings and normalized records.

Example:
    from survey_blend.database import initialize_database, session_scope
    from survey_blend.database import MappingOperations

    initialize_database(':memory:')

    with session_scope() as session:
        MappingOperations.create_mapping(
            session, 'specialty', 'Cardiology', ['Cardio', 'Cardiology'],
        )
"""

from typing import Optional

from survey_blend.database.models.base import (
    Base,
    initialize_engine,
    get_engine,
    get_session,
    session_scope,
    create_all_tables,
    drop_all_tables,
    reset_engine,
    get_database_type,
    get_connection_info,
)
from survey_blend.database.models.standardized_mappings import (
    StandardizedMapping,
    SourceLabel,
    normalize_key,
)
from survey_blend.database.models.learned_mappings import LearnedMapping
from survey_blend.database.models.normalized_records import NormalizedRecord

from survey_blend.database.operations.mapping_ops import MappingOperations
from survey_blend.database.operations.learned_ops import LearnedOperations
from survey_blend.database.operations.record_ops import RecordOperations


def initialize_database(db_url: Optional[str] = None) -> None:
    """
    Initialize the survey_blend database.

    Args:
        db_url: Database URL or ':memory:'. If None, uses configuration.
    """
    initialize_engine(db_url)
    create_all_tables()


__all__ = [
    # Initialization
    'initialize_database',
    'initialize_engine',
    'get_engine',
    'get_session',
    'session_scope',
    'create_all_tables',
    'drop_all_tables',
    'reset_engine',
    'get_database_type',
    'get_connection_info',
    # Models
    'Base',
    'StandardizedMapping',
    'SourceLabel',
    'normalize_key',
    'LearnedMapping',
    'NormalizedRecord',
    # Operations
    'MappingOperations',
    'LearnedOperations',
    'RecordOperations',
]
