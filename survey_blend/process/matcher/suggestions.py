# Path: survey_blend/process/matcher/suggestions.py
"""
Suggestion Builder

Ranks canonical-name candidates for a raw label and clusters unmapped
labels into proposed groupings.

Clustering is greedy in first-seen order:
1. a learned correction wins outright
2. otherwise the best existing canonical name scoring above the threshold
3. otherwise the first cluster whose every member is similar enough
4. otherwise the label starts a new cluster

The proposed name of a new cluster is its highest-frequency label, ties
going to the label seen first.
"""

from itertools import combinations
from typing import Iterable, Optional

from survey_blend.constants import GLOBAL_SOURCE_SCOPE
from survey_blend.core.errors import ResolutionMiss
from survey_blend.core.logger.ipo_logging import get_process_logger
from survey_blend.database.models.standardized_mappings import normalize_key
from survey_blend.process.matcher.models import (
    GroupingSuggestion,
    SuggestionCandidate,
    SuggestionOrigin,
)
from survey_blend.process.matcher.similarity import similarity


logger = get_process_logger('matcher.suggestions')

LearnedIndex = dict[tuple[str, str], str]


def lookup_learned(
    learned: Optional[LearnedIndex],
    label: str,
    survey_source: Optional[str] = None,
) -> Optional[str]:
    """
    Find a learned correction, source scope first, then global.

    Returns:
        Canonical name or None
    """
    if not learned:
        return None
    key = normalize_key(label)
    if survey_source:
        hit = learned.get((key, survey_source))
        if hit:
            return hit
    return learned.get((key, GLOBAL_SOURCE_SCOPE))


def suggest(
    raw_label: str,
    existing_canonical_names: Iterable[str],
    threshold: float,
    unmapped_labels: Iterable[str] = (),
    learned: Optional[LearnedIndex] = None,
    survey_source: Optional[str] = None,
) -> list[SuggestionCandidate]:
    """
    Rank canonical-name candidates for one raw label.

    Args:
        raw_label: Label to find a name for
        existing_canonical_names: Names already in the registry
        threshold: Similarity a candidate must exceed (0-1)
        unmapped_labels: Other currently-unmapped labels
        learned: Learned index (label_key, scope) -> canonical name
        survey_source: Source of raw_label, for scoped learned lookups

    Returns:
        Candidates sorted by score descending, ties in first-seen order.
        Each canonical name appears once.
    """
    candidates: list[SuggestionCandidate] = []
    seen: set[str] = set()

    learned_name = lookup_learned(learned, raw_label, survey_source)
    if learned_name:
        candidates.append(SuggestionCandidate(learned_name, 1.0, SuggestionOrigin.LEARNED))
        seen.add(normalize_key(learned_name))

    raw_key = normalize_key(raw_label)
    pools = (
        (existing_canonical_names, SuggestionOrigin.EXISTING),
        (unmapped_labels, SuggestionOrigin.CLUSTER),
    )
    for names, origin in pools:
        for name in names:
            key = normalize_key(name)
            if key in seen or (origin == SuggestionOrigin.CLUSTER and key == raw_key):
                continue
            score = similarity(raw_label, name)
            if score > threshold:
                candidates.append(SuggestionCandidate(name, score, origin))
                seen.add(key)

    # sorted() is stable, so equal scores keep first-seen order
    return sorted(candidates, key=lambda c: -c.score)


class _Cluster:
    """Working state for one proposed group."""

    def __init__(self, seed: ResolutionMiss, origin: SuggestionOrigin, name: Optional[str] = None):
        self.members: list[ResolutionMiss] = [seed]
        self.origin = origin
        self.fixed_name = name

    def accepts(self, label: ResolutionMiss, threshold: float) -> bool:
        """Complete linkage: every member must be similar enough."""
        return all(
            similarity(label.raw_label, member.raw_label) > threshold
            for member in self.members
        )

    def proposed_name(self) -> str:
        if self.fixed_name:
            return self.fixed_name

        totals: dict[str, int] = {}
        display: dict[str, str] = {}
        for member in self.members:
            key = normalize_key(member.raw_label)
            totals[key] = totals.get(key, 0) + member.frequency
            display.setdefault(key, ' '.join(member.raw_label.split()))

        # max() returns the first maximal key, dicts keep first-seen order
        best = max(totals, key=lambda k: totals[k])
        return display[best]

    def confidence(self) -> float:
        if self.origin == SuggestionOrigin.LEARNED:
            return 1.0
        if self.origin == SuggestionOrigin.EXISTING:
            scores = [similarity(m.raw_label, self.fixed_name) for m in self.members]
            return round(sum(scores) / len(scores), 4)
        if len(self.members) == 1:
            return 1.0

        pairs = list(combinations(self.members, 2))
        total = sum(similarity(a.raw_label, b.raw_label) for a, b in pairs)
        return round(total / len(pairs), 4)


def suggest_groupings(
    unmapped: Iterable[ResolutionMiss],
    existing_canonical_names: Iterable[str],
    threshold: float,
    confirmation_floor: float,
    learned: Optional[LearnedIndex] = None,
) -> list[GroupingSuggestion]:
    """
    Cluster unmapped labels into proposed canonical groupings.

    Args:
        unmapped: Unmapped labels in first-seen order
        existing_canonical_names: Names already in the registry
        threshold: Similarity a grouping must exceed (0-1)
        confirmation_floor: Confidence below which confirmation is required
        learned: Learned index (label_key, scope) -> canonical name

    Returns:
        Suggestions sorted by confidence descending (stable). Every input
        label appears in exactly one suggestion.
    """
    existing = list(dict.fromkeys(existing_canonical_names))
    clusters: list[_Cluster] = []
    by_fixed_name: dict[str, _Cluster] = {}

    for label in unmapped:
        learned_name = lookup_learned(learned, label.raw_label, label.survey_source)
        if learned_name:
            _join_named(by_fixed_name, clusters, label, learned_name, SuggestionOrigin.LEARNED)
            continue

        best_name, best_score = None, 0.0
        for name in existing:
            score = similarity(label.raw_label, name)
            if score > threshold and score > best_score:
                best_name, best_score = name, score
        if best_name is not None:
            _join_named(by_fixed_name, clusters, label, best_name, SuggestionOrigin.EXISTING)
            continue

        target = next(
            (c for c in clusters
             if c.origin == SuggestionOrigin.CLUSTER and c.accepts(label, threshold)),
            None,
        )
        if target is None:
            clusters.append(_Cluster(label, SuggestionOrigin.CLUSTER))
        else:
            target.members.append(label)

    suggestions = []
    for cluster in clusters:
        confidence = cluster.confidence()
        suggestions.append(GroupingSuggestion(
            proposed_name=cluster.proposed_name(),
            labels=list(cluster.members),
            confidence=confidence,
            origin=cluster.origin,
            requires_confirmation=confidence < confirmation_floor,
        ))

    logger.debug(
        f"Grouped {sum(len(c.members) for c in clusters)} unmapped label(s) "
        f"into {len(suggestions)} suggestion(s)"
    )
    return sorted(suggestions, key=lambda s: -s.confidence)


def _join_named(
    by_fixed_name: dict[str, _Cluster],
    clusters: list[_Cluster],
    label: ResolutionMiss,
    name: str,
    origin: SuggestionOrigin,
) -> _Cluster:
    """Add a label to the cluster for a fixed canonical name."""
    key = normalize_key(name)
    cluster = by_fixed_name.get(key)
    if cluster is None:
        cluster = _Cluster(label, origin, name)
        by_fixed_name[key] = cluster
        clusters.append(cluster)
    else:
        cluster.members.append(label)
    return cluster


__all__ = ['suggest', 'suggest_groupings', 'lookup_learned']
