# Path: survey_blend/__init__.py
"""
survey_blend

Reconciles, normalizes and blends compensation survey data from several
sources into one report.

Layers:
    - process.matcher: Canonical-name resolution, learned mappings, suggestions
    - process.normalizer: Wide-format rows -> long-format records
    - process.blending: Grouping and weighted blending with provenance
    - consistency: Locks, transaction queue, atomic multi-step operations
    - database: SQLAlchemy persistence for mappings and records
    - engine: Async boundary used by upload, mapping and report layers
"""

from .engine import SurveyBlendEngine, IngestionResult, ApplyLearnedResult
from .consistency import ConsistencyService
from .database import initialize_database

__version__ = '0.1.0'

__all__ = [
    'SurveyBlendEngine',
    'IngestionResult',
    'ApplyLearnedResult',
    'ConsistencyService',
    'initialize_database',
    '__version__',
]
