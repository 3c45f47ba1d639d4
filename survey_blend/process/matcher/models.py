# Path: survey_blend/process/matcher/models.py
"""
Suggestion Models

Models representing mapping suggestions returned to the mapping UI.
Suggestions never mutate state; accepting one is a separate mutation.
"""

from enum import Enum
from dataclasses import dataclass, field

from survey_blend.constants import Confidence, get_confidence_band
from survey_blend.core.errors import ResolutionMiss


class SuggestionOrigin(str, Enum):
    """Where a proposed canonical name came from."""
    LEARNED = "learned"
    EXISTING = "existing"
    CLUSTER = "cluster"


@dataclass(frozen=True)
class SuggestionCandidate:
    """
    A canonical name proposed for one raw label.

    Attributes:
        canonical_name: Proposed canonical name
        score: Similarity (1.0 for learned corrections)
        origin: Learned correction, existing mapping or other unmapped label
    """
    canonical_name: str
    score: float
    origin: SuggestionOrigin

    @property
    def confidence(self) -> Confidence:
        """Confidence band for the score."""
        return get_confidence_band(self.score)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'canonical_name': self.canonical_name,
            'score': self.score,
            'origin': self.origin.value,
            'confidence': self.confidence.value,
        }


@dataclass
class GroupingSuggestion:
    """
    Proposed group of unmapped labels sharing one canonical name.

    Attributes:
        proposed_name: Canonical name to create or join
        labels: Unmapped labels in the group, in first-seen order
        confidence: Average similarity within the group (0-1)
        origin: Why this name was proposed
        requires_confirmation: True when confidence is below the floor
    """
    proposed_name: str
    labels: list[ResolutionMiss] = field(default_factory=list)
    confidence: float = 1.0
    origin: SuggestionOrigin = SuggestionOrigin.CLUSTER
    requires_confirmation: bool = False

    @property
    def joins_existing(self) -> bool:
        """True when the proposal targets an existing mapping."""
        return self.origin == SuggestionOrigin.EXISTING

    @property
    def total_frequency(self) -> int:
        """Rows covered by the group."""
        return sum(label.frequency for label in self.labels)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'proposed_name': self.proposed_name,
            'labels': [label.to_dict() for label in self.labels],
            'confidence': self.confidence,
            'confidence_band': get_confidence_band(self.confidence).value,
            'origin': self.origin.value,
            'requires_confirmation': self.requires_confirmation,
            'total_frequency': self.total_frequency,
        }


__all__ = ['SuggestionOrigin', 'SuggestionCandidate', 'GroupingSuggestion']
