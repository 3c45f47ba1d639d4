# Path: survey_blend/process/matcher/similarity.py
"""
Similarity Matcher

Deterministic, symmetric similarity between two label strings.

Labels are tokenized before comparison:
- lowercased, punctuation treated as a separator
- filler words dropped ("and", "of", "the")
- domain abbreviations expanded ("peds" -> "pediatrics", "ob/gyn")
- plurals folded to singular

The score combines an edit-distance ratio over the sorted token string
(word reordering) with a token-set ratio capped at 0.9 (one label
contained in the other).
"""

import re
from functools import lru_cache

from rapidfuzz import fuzz


# Words that carry no meaning for matching
STOPWORDS = frozenset({'and', 'of', 'the', 'for', 'in'})

# Abbreviations commonly used by survey publishers
ABBREVIATIONS = {
    'cardio': 'cardiology',
    'cards': 'cardiology',
    'peds': 'pediatrics',
    'ped': 'pediatrics',
    'ob': 'obstetrics',
    'gyn': 'gynecology',
    'obgyn': 'obstetrics gynecology',
    'ent': 'otolaryngology',
    'im': 'internal medicine',
    'fm': 'family medicine',
    'em': 'emergency medicine',
    'gi': 'gastroenterology',
    'ortho': 'orthopedic',
    'onc': 'oncology',
    'hem': 'hematology',
    'heme': 'hematology',
    'neuro': 'neurology',
    'uro': 'urology',
    'derm': 'dermatology',
    'psych': 'psychiatry',
    'pulm': 'pulmonary',
    'rad': 'radiology',
    'anes': 'anesthesiology',
    'anesth': 'anesthesiology',
    'gen': 'general',
    'surg': 'surgery',
    'med': 'medicine',
    'np': 'nurse practitioner',
    'pa': 'physician assistant',
    'app': 'advanced practice provider',
    'crna': 'certified registered nurse anesthetist',
    'md': 'physician',
    'phys': 'physician',
    'tcc': 'total cash compensation',
    'wrvu': 'work rvu',
    'wrvus': 'work rvu',
    'cf': 'conversion factor',
}

CONTAINMENT_CAP = 0.9

_SEPARATORS = re.compile(r'[^a-z0-9]+')


def _singularize(token: str) -> str:
    """Fold a plural token to singular."""
    if len(token) > 4 and token.endswith('ies'):
        return token[:-3] + 'y'
    if len(token) > 3 and token.endswith('s') and not token.endswith(('ss', 'us', 'is')):
        return token[:-1]
    return token


@lru_cache(maxsize=4096)
def tokenize(label: str) -> tuple[str, ...]:
    """
    Split a label into normalized tokens.

    Args:
        label: Raw label text

    Returns:
        Tokens in original order after expansion and singularization
    """
    if not label:
        return ()

    tokens: list[str] = []
    for raw in _SEPARATORS.split(str(label).lower()):
        if not raw or raw in STOPWORDS:
            continue
        for token in ABBREVIATIONS.get(raw, raw).split():
            tokens.append(_singularize(token))
    return tuple(tokens)


def normalize_label(label: str) -> str:
    """
    Order-insensitive normalized form of a label.

    Example:
        normalize_label('Surgery, General') == normalize_label('General Surgery')
    """
    return ' '.join(sorted(set(tokenize(label))))


def similarity(a: str, b: str) -> float:
    """
    Similarity score between two labels.

    Args:
        a: First label
        b: Second label

    Returns:
        Score in [0, 1]; 1.0 for identical token sets, 0.0 if either is empty.
        similarity(a, b) == similarity(b, a) for all inputs.
    """
    left, right = sorted((normalize_label(a), normalize_label(b)))
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0

    ordered = fuzz.ratio(left, right) / 100.0
    contained = CONTAINMENT_CAP * fuzz.token_set_ratio(left, right) / 100.0
    return round(max(ordered, contained), 4)


__all__ = ['tokenize', 'normalize_label', 'similarity', 'ABBREVIATIONS', 'STOPWORDS']
