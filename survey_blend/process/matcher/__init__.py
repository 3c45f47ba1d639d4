# Path: survey_blend/process/matcher/__init__.py
"""
Label Matching

Reconciles raw survey labels with the canonical-name registry.

Core Components:
    - similarity: Symmetric token-based label similarity
    - MappingResolver: Registry lookups and mutations with a cached index
    - suggestions: Candidate ranking and unmapped-label clustering
    - models: Suggestion data structures
"""

from .similarity import similarity, tokenize, normalize_label
from .models import SuggestionOrigin, SuggestionCandidate, GroupingSuggestion
from .suggestions import suggest, suggest_groupings, lookup_learned
from .resolver import MappingResolver, ResolutionIndex

__all__ = [
    'similarity',
    'tokenize',
    'normalize_label',
    'SuggestionOrigin',
    'SuggestionCandidate',
    'GroupingSuggestion',
    'suggest',
    'suggest_groupings',
    'lookup_learned',
    'MappingResolver',
    'ResolutionIndex',
]
