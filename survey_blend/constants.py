# Path: survey_blend/constants.py
"""
System-Wide Constants for survey_blend

Central repository for constant values used across the system.

Constants are organized by category:
- Mapping Types
- Percentiles
- Metrics
- Blending Methods
- Grouping Fields
- Lock Modes
- Confidence Levels
"""

from enum import Enum
from typing import Final


# ==============================================================================
# MAPPING TYPES
# ==============================================================================

class MappingType(str, Enum):
    """
    Vocabularies reconciled by the mapping registry.

    Each type has its own namespace of canonical names and learned mappings.
    """
    SPECIALTY = 'specialty'
    PROVIDER_TYPE = 'provider_type'
    REGION = 'region'
    VARIABLE = 'variable'


# Learned mappings with this scope apply to every source
GLOBAL_SOURCE_SCOPE: Final[str] = '*'


# ==============================================================================
# PERCENTILES
# ==============================================================================

# Percentiles tracked on every normalized record, in display order
TRACKED_PERCENTILES: Final[tuple[str, ...]] = ('p25', 'p50', 'p75', 'p90')


# ==============================================================================
# METRICS
# ==============================================================================

class Metric(str, Enum):
    """Compensation metrics carried by survey rows."""
    TCC = 'tcc'
    WRVU = 'wrvu'
    CF = 'cf'


# Canonical variable name written to normalized records per metric
METRIC_VARIABLE_NAMES: Final[dict[Metric, str]] = {
    Metric.TCC: 'Total Cash Compensation',
    Metric.WRVU: 'Work RVUs',
    Metric.CF: 'Conversion Factor',
}


# ==============================================================================
# BLENDING METHODS
# ==============================================================================

class BlendMethod(str, Enum):
    """
    Methods for combining contributing records into one value.

    NONE returns the individual records, SIMPLE weights every record 1/n,
    WEIGHTED weights by incumbent count.
    """
    NONE = 'none'
    SIMPLE = 'simple'
    WEIGHTED = 'weighted'


# ==============================================================================
# GROUPING FIELDS
# ==============================================================================

class GroupingField(str, Enum):
    """Fields that can distinguish report groups."""
    SPECIALTY = 'specialty'
    REGION = 'region'
    PROVIDER_TYPE = 'provider_type'
    SOURCE = 'source'
    YEAR = 'year'


# Placeholders used when a grouping field is missing on a record
ALL_REGIONS_LABEL: Final[str] = 'All Regions'
UNKNOWN_LABEL: Final[str] = 'Unknown'

# Separator for flattened composite group keys ("specialty|region|...")
GROUP_KEY_SEPARATOR: Final[str] = '|'


# ==============================================================================
# LOCK MODES
# ==============================================================================

class LockMode(str, Enum):
    """
    Lock modes for logical stores.

    READ is shared, READWRITE is exclusive.
    """
    READ = 'read'
    READWRITE = 'readwrite'


# Logical store names guarded by the consistency layer
MAPPINGS_STORE: Final[str] = 'mappings'
RECORDS_STORE: Final[str] = 'records'


# ==============================================================================
# CONFIDENCE LEVELS
# ==============================================================================

class Confidence(str, Enum):
    """Confidence band attached to a mapping suggestion."""
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


# Similarity score bands (0-1)
CONFIDENCE_HIGH_MIN: Final[float] = 0.9
CONFIDENCE_MEDIUM_MIN: Final[float] = 0.75


def get_confidence_band(score: float) -> Confidence:
    """
    Get confidence band from a similarity score.

    Args:
        score: Similarity score (0-1)

    Returns:
        Confidence enum value
    """
    if score >= CONFIDENCE_HIGH_MIN:
        return Confidence.HIGH
    elif score >= CONFIDENCE_MEDIUM_MIN:
        return Confidence.MEDIUM
    else:
        return Confidence.LOW
