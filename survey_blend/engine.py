# Path: survey_blend/engine.py
"""
Survey Blend Engine

Boundary of the survey blending core. Upload, mapping and report layers
call in here; nothing else touches the shared stores.

Every mutation runs through the ConsistencyService: it is queued, holds
readwrite locks on the mapping and record stores, and executes as an
atomic multi-step operation whose completed steps are rolled back on
failure. Reads (suggestions, reports, inventories) take read locks.

After any mapping change, records whose raw labels now resolve
differently are re-canonicalized (delete + insert) inside the same
atomic operation.

Example:
    initialize_database(':memory:')
    engine = SurveyBlendEngine(ConsistencyService.from_config())

    await engine.ingest_rows(rows_a, 'SourceA', 2023, provider_type='Physician')
    await engine.create_mapping('Cardiology', ['Cardio', 'Cardiology'])
    report = await engine.generate_report('tcc', percentiles=['p50'], method='weighted')
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from survey_blend.config_loader import ConfigLoader
from survey_blend.constants import (
    BlendMethod,
    LockMode,
    MAPPINGS_STORE,
    MappingType,
    METRIC_VARIABLE_NAMES,
    Metric,
    RECORDS_STORE,
)
from survey_blend.consistency.atomic_operations import OperationStep
from survey_blend.consistency.service import ConsistencyService
from survey_blend.core.errors import (
    AtomicityError,
    FieldError,
    MappingConflictError,
    MappingNotFoundError,
    ResolutionMiss,
    ValidationError,
)
from survey_blend.core.logger.ipo_logging import (
    get_input_logger,
    get_output_logger,
    get_process_logger,
)
from survey_blend.database.models.base import session_scope
from survey_blend.database.models.learned_mappings import LearnedMapping
from survey_blend.database.models.standardized_mappings import (
    StandardizedMapping,
    normalize_key,
)
from survey_blend.database.operations.learned_ops import LearnedOperations
from survey_blend.database.operations.mapping_ops import LabelInput, MappingOperations
from survey_blend.database.operations.record_ops import DIMENSION_COLUMNS, RecordOperations
from survey_blend.process.blending.aggregator import BlendingAggregator, resolve_variable
from survey_blend.process.blending.grouping import GroupingSpec
from survey_blend.process.blending.models import Report, ReportGroup
from survey_blend.process.matcher.models import GroupingSuggestion, SuggestionCandidate
from survey_blend.process.matcher.resolver import MappingResolver
from survey_blend.process.matcher.suggestions import suggest_groupings
from survey_blend.process.normalizer.models import (
    NormalizedRecordData,
    RejectedRow,
)
from survey_blend.process.normalizer.row_normalizer import RowNormalizer


MUTATION_STORES = (MAPPINGS_STORE, RECORDS_STORE)


@dataclass
class IngestionResult:
    """
    Outcome of ingesting one survey upload.

    Attributes:
        survey_source: Source survey identifier
        survey_year: Survey year
        accepted: Records written to the store
        rejected: Rows rejected with the reason
        unmapped: Labels that did not resolve
        replaced_records: Records of an earlier upload of the same
            (source, year) that were replaced
        stats: Expansion statistics
    """
    survey_source: str
    survey_year: int
    accepted: list[NormalizedRecordData] = field(default_factory=list)
    rejected: list[RejectedRow] = field(default_factory=list)
    unmapped: list[ResolutionMiss] = field(default_factory=list)
    replaced_records: int = 0
    stats: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'survey_source': self.survey_source,
            'survey_year': self.survey_year,
            'accepted': [r.to_dict() for r in self.accepted],
            'rejected': [r.to_dict() for r in self.rejected],
            'unmapped': [m.to_dict() for m in self.unmapped],
            'replaced_records': self.replaced_records,
            'stats': dict(self.stats),
        }


@dataclass
class RecanonicalizationResult:
    """Records replaced after a mapping change."""
    mapping_type: str
    deleted: list[dict] = field(default_factory=list)
    inserted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.inserted)


@dataclass
class ApplyLearnedResult:
    """Outcome of promoting learned mappings into full mappings."""
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'created': list(self.created),
            'updated': list(self.updated),
            'skipped': list(self.skipped),
        }


def _mapping_type(value) -> MappingType:
    return MappingType(value)


class SurveyBlendEngine:
    """
    Async facade over the matcher, normalizer, blending and consistency layers.

    The database must be initialized (initialize_database) before use.
    """

    def __init__(
        self,
        consistency: ConsistencyService,
        resolver: Optional[MappingResolver] = None,
        config: Optional[ConfigLoader] = None,
    ):
        self.config = config or ConfigLoader()
        self.consistency = consistency
        self.resolver = resolver or MappingResolver(self.config)
        self.normalizer = RowNormalizer(self.resolver)
        self.aggregator = BlendingAggregator(self.config)

        self.logger = get_process_logger('engine')
        self.input_logger = get_input_logger('ingestion')
        self.output_logger = get_output_logger('report')

    # ==================================================================
    # INGESTION
    # ==================================================================

    async def ingest_rows(
        self,
        rows: Iterable[dict],
        survey_source: str,
        survey_year: int,
        provider_type: Optional[str] = None,
    ) -> IngestionResult:
        """
        Normalize and store one survey upload.

        A previous upload of the same (source, year) is replaced. Invalid
        rows are rejected individually; the rest of the batch is stored.

        Args:
            rows: Flat key-value rows
            survey_source: Source survey identifier
            survey_year: Survey year
            provider_type: Survey-level provider type for rows without one

        Returns:
            IngestionResult

        Raises:
            ValidationError: If source or year is invalid
            AtomicityError: If storing failed (previous records restored)
        """
        source, year = self._validate_survey(survey_source, survey_year)
        rows = [dict(row) for row in rows]
        self.input_logger.info(f"Ingesting {len(rows)} row(s) for {source}/{year}")

        state: dict[str, Any] = {}

        def normalize():
            state['normalized'] = self.normalizer.normalize_rows(
                rows, source, year, provider_type
            )
            return state['normalized']

        def remove_previous():
            with session_scope() as session:
                return RecordOperations.delete_by_survey(session, source, year)

        def restore_previous(snapshots):
            with session_scope() as session:
                RecordOperations.insert_records(session, snapshots)

        def store():
            with session_scope() as session:
                return RecordOperations.insert_records(
                    session, [record.to_row() for record in state['normalized'].accepted]
                )

        def verify_stored(ids):
            with session_scope() as session:
                return len(RecordOperations.find_by_ids(session, ids)) == len(ids)

        def unstore(ids):
            with session_scope() as session:
                RecordOperations.delete_by_ids(session, ids)

        outcome = await self._atomic([
            OperationStep('normalize-rows', execute=normalize),
            OperationStep('remove-previous-records', execute=remove_previous,
                          rollback=restore_previous),
            OperationStep('store-records', execute=store,
                          rollback=unstore, verify=verify_stored),
        ], f'ingest:{source}/{year}')
        normalized = outcome.step_results['normalize-rows']
        replaced = outcome.step_results['remove-previous-records']

        result = IngestionResult(
            survey_source=source,
            survey_year=year,
            accepted=normalized.accepted,
            rejected=normalized.rejected,
            unmapped=normalized.unmapped,
            replaced_records=len(replaced),
            stats=normalized.stats(),
        )
        self.input_logger.info(
            f"Ingested {source}/{year}: {len(result.accepted)} record(s), "
            f"{len(result.rejected)} rejected, {len(replaced)} replaced"
        )
        return result

    async def remove_survey(self, survey_source: str, survey_year: int) -> int:
        """
        Delete every record of one (source, year) upload.

        Returns:
            Number of records deleted
        """
        source, year = self._validate_survey(survey_source, survey_year)

        def delete():
            with session_scope() as session:
                return len(RecordOperations.delete_by_survey(session, source, year))

        return await self.consistency.atomic.execute_with_transaction(
            delete, MUTATION_STORES, name=f'remove-survey:{source}/{year}'
        )

    # ==================================================================
    # MAPPING MUTATIONS
    # ==================================================================

    async def create_mapping(
        self,
        canonical_name: str,
        source_labels: Iterable[LabelInput],
        mapping_type=MappingType.SPECIALTY,
        learn: bool = False,
    ) -> StandardizedMapping:
        """
        Group raw labels under a canonical name.

        With learn=True each label is also remembered as a learned
        correction, scoped to its source when one is given.

        Returns:
            The persisted mapping

        Raises:
            ValidationError / MappingConflictError: Invalid request
            AtomicityError: A later step failed and the mapping was removed
        """
        mapping_type = _mapping_type(mapping_type)
        labels = list(source_labels)

        def create():
            return self.resolver.create_mapping(mapping_type, canonical_name, labels)

        def uncreate(mapping):
            self.resolver.remove_mapping(mapping.mapping_id)

        steps = [OperationStep('create-mapping', execute=create, rollback=uncreate)]
        if learn:
            steps.append(self._learn_step(
                mapping_type, [(label, canonical_name) for label in labels]
            ))
        steps.append(self._recanonicalize_step(mapping_type))

        outcome = await self._atomic(steps, f'create-mapping:{canonical_name}')
        mapping = outcome.step_results['create-mapping']
        self.logger.info(
            f"Mapping '{mapping.canonical_name}' created; "
            f"{outcome.step_results['recanonicalize'].changed} record(s) re-canonicalized"
        )
        return mapping

    async def add_source_label(self, mapping_id: str, label: LabelInput) -> StandardizedMapping:
        """Add a raw label to an existing mapping."""
        return await self._mutate_mapping(
            mapping_id, 'add-source-label',
            lambda: self.resolver.add_source_label(mapping_id, label),
        )

    async def remove_source_label(
        self,
        mapping_id: str,
        label: str,
        survey_source: Optional[str] = None,
    ) -> StandardizedMapping:
        """Remove a raw label from a mapping (never its last label)."""
        return await self._mutate_mapping(
            mapping_id, 'remove-source-label',
            lambda: self.resolver.remove_source_label(mapping_id, label, survey_source),
            extra_steps=[self._forget_step(mapping_id, label)],
        )

    async def rename_mapping(self, mapping_id: str, canonical_name: str) -> StandardizedMapping:
        """Change a mapping's canonical name; records follow."""
        return await self._mutate_mapping(
            mapping_id, 'rename-mapping',
            lambda: self.resolver.rename_mapping(mapping_id, canonical_name),
        )

    async def remove_mapping(self, mapping_id: str) -> dict:
        """
        Delete a mapping. Records fall back to their raw labels.

        Returns:
            Snapshot of the deleted mapping
        """
        return await self._mutate_mapping(
            mapping_id, 'remove-mapping',
            lambda: self.resolver.remove_mapping(mapping_id),
        )

    async def accept_suggestion(
        self,
        suggestion: GroupingSuggestion,
        mapping_type=None,
    ) -> StandardizedMapping:
        """
        Accept a grouping suggestion.

        Joins the existing mapping of the proposed name if there is one,
        otherwise creates it. Either way the labels go in together: a
        label owned by another mapping rejects the whole suggestion.

        Raises:
            MappingConflictError: A label belongs to another mapping
        """
        labels = [
            {'label': miss.raw_label, 'survey_source': miss.survey_source,
             'frequency': miss.frequency}
            for miss in suggestion.labels
        ]
        if mapping_type is None:
            mapping_type = suggestion.labels[0].mapping_type if suggestion.labels else MappingType.SPECIALTY

        existing = self.resolver.find_mapping(mapping_type, suggestion.proposed_name)
        if existing is None:
            return await self.create_mapping(suggestion.proposed_name, labels, mapping_type)

        return await self._mutate_mapping(
            existing.mapping_id, 'add-source-labels',
            lambda: self.resolver.add_source_labels(existing.mapping_id, labels),
        )

    async def prune_unreferenced(self, mapping_type=None) -> list[str]:
        """
        Delete mappings whose canonical name no record uses.

        Returns:
            Canonical names removed
        """
        types = [_mapping_type(mapping_type)] if mapping_type else list(MappingType)

        def prune():
            removed: list[dict] = []
            try:
                # One session: all deletions commit or none do
                with session_scope() as session:
                    for mt in types:
                        referenced = RecordOperations.referenced_values(session, mt.value)
                        for mapping in MappingOperations.list_mappings(session, mt.value):
                            if mapping.canonical_name not in referenced:
                                removed.append(
                                    MappingOperations.delete_mapping(session, mapping.mapping_id)
                                )
            finally:
                self.resolver.invalidate()
            return removed

        def unprune(removed):
            for snapshot in reversed(removed):
                self.resolver.restore_mapping(snapshot)

        outcome = await self._atomic(
            [OperationStep('prune-mappings', execute=prune, rollback=unprune)],
            'prune-unreferenced',
        )
        names = [snapshot['canonical_name'] for snapshot in outcome.step_results['prune-mappings']]
        self.logger.info(f"Pruned {len(names)} unreferenced mapping(s)")
        return names

    # ==================================================================
    # LEARNED MAPPINGS
    # ==================================================================

    async def learn_correction(
        self,
        raw_label: str,
        canonical_name: str,
        mapping_type=MappingType.SPECIALTY,
        survey_source: Optional[str] = None,
    ) -> LearnedMapping:
        """
        Remember a single raw label -> canonical name correction.

        Records re-resolve immediately when the canonical name is backed
        by a mapping; otherwise the correction waits for apply_learned().
        """
        mapping_type = _mapping_type(mapping_type)
        label = {'label': raw_label, 'survey_source': survey_source}

        outcome = await self._atomic([
            self._learn_step(mapping_type, [(label, canonical_name)]),
            self._recanonicalize_step(mapping_type),
        ], f'learn:{raw_label}')

        learned = outcome.step_results['learn-labels']['learned'][0]
        return learned

    async def list_learned(self, mapping_type=None) -> list[LearnedMapping]:
        """List learned mappings."""
        async with self.consistency.locks.hold(MAPPINGS_STORE, LockMode.READ):
            return self.resolver.list_learned(mapping_type)

    async def remove_learned(self, learned_id: str) -> bool:
        """
        Forget one learned mapping.

        Returns:
            False if no learned mapping has the ID
        """
        found: list[dict] = []

        def plan() -> list[OperationStep]:
            with session_scope() as session:
                entry = session.get(LearnedMapping, learned_id)
                if entry is None:
                    return []
                snapshot = LearnedOperations.snapshot(entry)
            found.append(snapshot)

            def forget():
                return self.resolver.forget_learned(learned_id)

            def unforget(_deleted):
                self.resolver.restore_learned([snapshot])

            return [
                OperationStep('forget-learned', execute=forget, rollback=unforget),
                self._recanonicalize_step(MappingType(snapshot['mapping_type'])),
            ]

        await self._atomic(plan, f'forget-learned:{learned_id}')
        return bool(found)

    async def clear_learned(self, mapping_type=None) -> int:
        """
        Bulk-clear learned mappings.

        Returns:
            Number of learned mappings removed
        """
        types = [_mapping_type(mapping_type)] if mapping_type else list(MappingType)

        def clear():
            return self.resolver.clear_learned(mapping_type)

        def unclear(snapshots):
            self.resolver.restore_learned(snapshots)

        steps = [OperationStep('clear-learned', execute=clear, rollback=unclear)]
        steps.extend(self._recanonicalize_step(mt, f'recanonicalize-{mt.value}') for mt in types)

        outcome = await self._atomic(steps, 'clear-learned')
        return len(outcome.step_results['clear-learned'])

    async def apply_learned(self, mapping_type=None) -> ApplyLearnedResult:
        """
        Promote learned mappings into full mappings.

        Creates the canonical mapping when missing, otherwise adds the
        label to it. Labels owned by a different mapping are skipped.
        """
        result = ApplyLearnedResult()

        def promote_step(entry: LearnedMapping) -> OperationStep:
            def execute():
                label = {
                    'label': entry.label,
                    'survey_source': None if entry.source_scope == '*' else entry.source_scope,
                }
                owner = self.resolver.find_mapping(entry.mapping_type, entry.canonical_name)
                try:
                    if owner is None:
                        mapping = self.resolver.create_mapping(
                            entry.mapping_type, entry.canonical_name, [label]
                        )
                        result.created.append(mapping.canonical_name)
                        return ('created', mapping.mapping_id)

                    snapshot = self.resolver.snapshot_mapping(owner.mapping_id)
                    self.resolver.add_source_label(owner.mapping_id, label)
                    result.updated.append(owner.canonical_name)
                    return ('updated', snapshot)
                except MappingConflictError as e:
                    result.skipped.append({'label': entry.label, 'reason': e.message})
                    return ('skipped', None)

            def rollback(data):
                action, payload = data
                if action == 'created':
                    self.resolver.remove_mapping(payload)
                elif action == 'updated':
                    self.resolver.restore_mapping(payload)

            return OperationStep(f'promote:{entry.label}', execute=execute, rollback=rollback)

        def plan() -> list[OperationStep]:
            learned = self.resolver.list_learned(mapping_type)
            steps = [promote_step(entry) for entry in learned]
            steps.extend(
                self._recanonicalize_step(MappingType(mt), f'recanonicalize-{mt}')
                for mt in sorted({lm.mapping_type for lm in learned})
            )
            return steps

        await self._atomic(plan, 'apply-learned')

        self.logger.info(
            f"Applied learned mappings: {len(result.created)} created, "
            f"{len(result.updated)} updated, {len(result.skipped)} skipped"
        )
        return result

    # ==================================================================
    # READS
    # ==================================================================

    async def list_mappings(self, mapping_type=None) -> list[StandardizedMapping]:
        """List mappings."""
        async with self.consistency.locks.hold(MAPPINGS_STORE, LockMode.READ):
            return self.resolver.list_mappings(mapping_type)

    async def resolve(
        self,
        raw_label: str,
        survey_source: Optional[str] = None,
        mapping_type=MappingType.SPECIALTY,
    ) -> Optional[str]:
        """Resolve a raw label (None when unmapped)."""
        async with self.consistency.locks.hold(MAPPINGS_STORE, LockMode.READ):
            return self.resolver.resolve(raw_label, survey_source, mapping_type)

    async def list_unmapped(self, mapping_type=None) -> list[ResolutionMiss]:
        """
        Raw labels in the record store that currently resolve to nothing.

        Returns:
            ResolutionMiss per (type, label, source) with record counts
        """
        types = [_mapping_type(mapping_type)] if mapping_type else [
            MappingType.SPECIALTY, MappingType.PROVIDER_TYPE, MappingType.REGION,
        ]
        misses: list[ResolutionMiss] = []

        async with self.consistency.locks.hold(RECORDS_STORE, LockMode.READ):
            for mt in types:
                self.resolver.index(mt)
                with session_scope() as session:
                    inventory = RecordOperations.label_inventory(session, mt.value)

                counts: dict[tuple[str, str], int] = {}
                for raw, _current, source, count in inventory:
                    if self.resolver.resolve(raw, source, mt) is None:
                        counts[(raw, source)] = counts.get((raw, source), 0) + count
                misses.extend(
                    ResolutionMiss(mt.value, raw, source, count)
                    for (raw, source), count in counts.items()
                )
        return misses

    async def suggest(
        self,
        mapping_type=MappingType.SPECIALTY,
        threshold: Optional[float] = None,
        unmapped: Optional[Iterable[Union[ResolutionMiss, str]]] = None,
    ) -> list[GroupingSuggestion]:
        """
        Propose groupings for unmapped labels without mutating anything.

        Args:
            mapping_type: Vocabulary
            threshold: Similarity to exceed (default: configured)
            unmapped: Labels to group (default: the store's unmapped labels)

        Raises:
            ValueError: If threshold is outside [0, 1]
        """
        mapping_type = _mapping_type(mapping_type)
        threshold = self._threshold(threshold)

        if unmapped is None:
            labels = await self.list_unmapped(mapping_type)
        else:
            labels = [
                item if isinstance(item, ResolutionMiss)
                else ResolutionMiss(mapping_type.value, str(item))
                for item in unmapped
            ]

        async with self.consistency.locks.hold(MAPPINGS_STORE, LockMode.READ):
            index = self.resolver.index(mapping_type)
            return suggest_groupings(
                labels,
                list(index.names.values()),
                threshold,
                self.config.get('confirmation_floor'),
                learned=index.learned,
            )

    async def suggest_for_label(
        self,
        raw_label: str,
        mapping_type=MappingType.SPECIALTY,
        threshold: Optional[float] = None,
        survey_source: Optional[str] = None,
    ) -> list[SuggestionCandidate]:
        """Rank canonical-name candidates for one raw label."""
        mapping_type = _mapping_type(mapping_type)
        threshold = self._threshold(threshold)
        others = [m.raw_label for m in await self.list_unmapped(mapping_type)]

        async with self.consistency.locks.hold(MAPPINGS_STORE, LockMode.READ):
            return self.resolver.suggest(
                raw_label, threshold, mapping_type,
                unmapped_labels=others, survey_source=survey_source,
            )

    async def generate_report(
        self,
        metric: Union[Metric, str],
        grouping: Union[GroupingSpec, str, Iterable[str], None] = None,
        percentiles: Optional[Iterable[str]] = None,
        method: Union[BlendMethod, str, None] = None,
        survey_sources: Optional[Iterable[str]] = None,
        survey_years: Optional[Iterable[int]] = None,
        specialties: Optional[Iterable[str]] = None,
        renormalize: Optional[bool] = None,
    ) -> Report:
        """
        Group and blend normalized records for one metric.

        Args:
            metric: 'tcc', 'wrvu', 'cf' or a canonical variable name
            grouping: GroupingSpec, preset name or field names
            percentiles: Percentiles to report (default: all tracked)
            method: 'none', 'simple' or 'weighted' (default: configured)
            survey_sources / survey_years / specialties: Record filters
            renormalize: Override the sparse-percentile flag

        Returns:
            Report with one group per composite key
        """
        variable = self._variable_for(metric)

        async with self.consistency.locks.hold(RECORDS_STORE, LockMode.READ):
            with session_scope() as session:
                rows = RecordOperations.query_records(
                    session,
                    variable=variable,
                    specialties=specialties,
                    survey_sources=survey_sources,
                    survey_years=survey_years,
                )
                records = [NormalizedRecordData.from_orm(row) for row in rows]

        report = self.aggregator.build_report(
            records, metric, grouping, percentiles, method, renormalize, variable=variable,
        )
        self.output_logger.info(
            f"Generated report for '{variable}': {len(report.groups)} group(s)"
        )
        return report

    async def explain(
        self,
        group_key: str,
        metric: Union[Metric, str],
        grouping: Union[GroupingSpec, str, Iterable[str], None] = None,
        percentiles: Optional[Iterable[str]] = None,
        method: Union[BlendMethod, str, None] = None,
    ) -> Optional[ReportGroup]:
        """
        Contribution breakdown for one group of a report.

        Args:
            group_key: Flattened key returned with the report ('Cardiology|West')
            metric / grouping / percentiles / method: Same as generate_report

        Returns:
            The ReportGroup (blended result with contributions, or the raw
            records), or None if no such group exists
        """
        report = await self.generate_report(metric, grouping, percentiles, method)
        group = report.find(group_key)
        if group is None:
            self.output_logger.warning(f"No report group '{group_key}' for '{report.variable}'")
        return group

    def stats(self) -> dict:
        """Store and consistency statistics."""
        with session_scope() as session:
            records = RecordOperations.count_records(session)
            mappings = len(MappingOperations.list_mappings(session))
            learned = len(LearnedOperations.list_learned(session))
        return {
            'records': records,
            'mappings': mappings,
            'learned_mappings': learned,
            'consistency': self.consistency.stats(),
        }

    # ==================================================================
    # INTERNALS
    # ==================================================================

    async def _queue_mutation(self, operation, name: str) -> Any:
        return await self.consistency.atomic.execute_with_transaction(
            operation, MUTATION_STORES, name=name
        )

    async def _atomic(
        self,
        steps: Union[list[OperationStep], Callable[[], list[OperationStep]]],
        name: str,
    ):
        """
        Queue an atomic operation over the mutable stores.

        steps may be a callable; it is then planned only once the queue
        slot and store locks are held, so the plan reads current state.

        Raises:
            ValidationError / MappingNotFoundError: The first step rejected
                the request before anything changed
            AtomicityError: Any other step failure (rollback attempted)
        """
        planned: list[OperationStep] = []

        async def operation():
            planned.extend(steps() if callable(steps) else steps)
            return await self.consistency.atomic.execute_atomic(planned, operation_name=name)

        try:
            return await self._queue_mutation(operation, name)
        except AtomicityError as e:
            rejected = (
                planned
                and e.failed_step == planned[0].name
                and not e.rolled_back
                and not e.is_compound
                and isinstance(e.cause, (ValidationError, MappingNotFoundError))
            )
            if rejected:
                raise e.cause
            raise

    async def _mutate_mapping(
        self,
        mapping_id: str,
        name: str,
        mutate,
        extra_steps: Iterable[OperationStep] = (),
    ) -> Any:
        """Run a single-mapping mutation followed by re-canonicalization."""
        snapshot = self.resolver.snapshot_mapping(mapping_id)
        mapping_type = MappingType(snapshot['mapping_type'])
        state: dict[str, dict] = {}

        def execute():
            state['before'] = self.resolver.snapshot_mapping(mapping_id)
            return mutate()

        def rollback(_result):
            self.resolver.restore_mapping(state['before'])

        outcome = await self._atomic([
            OperationStep(name, execute=execute, rollback=rollback),
            *extra_steps,
            self._recanonicalize_step(mapping_type),
        ], f'{name}:{snapshot["canonical_name"]}')
        return outcome.step_results[name]

    def _forget_step(self, mapping_id: str, label: str) -> OperationStep:
        """Step dropping learned entries that send label to a mapping's name."""
        def execute():
            snapshot = self.resolver.snapshot_mapping(mapping_id)
            key = normalize_key(label)
            forgotten = [
                LearnedOperations.snapshot(entry)
                for entry in self.resolver.list_learned(snapshot['mapping_type'])
                if entry.label_key == key
                and normalize_key(entry.canonical_name) == snapshot['name_key']
            ]
            for entry in forgotten:
                self.resolver.forget_learned(entry['learned_id'])
            return forgotten

        def rollback(forgotten):
            self.resolver.restore_learned(forgotten)

        return OperationStep('forget-learned', execute=execute, rollback=rollback)

    def _learn_step(self, mapping_type: MappingType, corrections: list) -> OperationStep:
        """
        Step recording learned corrections.

        corrections: (label input, canonical name) pairs
        """
        def execute():
            previous: list[dict] = []
            learned: list[LearnedMapping] = []
            created: list[str] = []
            for label, canonical in corrections:
                data = {'label': label} if isinstance(label, str) else label
                scope = data.get('survey_source') or None
                with session_scope() as session:
                    existing = LearnedOperations.find(
                        session, mapping_type.value, data['label'], scope or '*'
                    )
                    if existing is not None:
                        previous.append(LearnedOperations.snapshot(existing))
                entry = self.resolver.learn(mapping_type, data['label'], canonical, scope)
                learned.append(entry)
                if existing is None:
                    created.append(entry.learned_id)
            return {'learned': learned, 'created': created, 'previous': previous}

        def rollback(data):
            for learned_id in data['created']:
                self.resolver.forget_learned(learned_id)
            for snapshot in data['previous']:
                self.resolver.forget_learned(snapshot['learned_id'])
            self.resolver.restore_learned(data['previous'])

        return OperationStep('learn-labels', execute=execute, rollback=rollback)

    def _recanonicalize_step(
        self,
        mapping_type: MappingType,
        name: str = 'recanonicalize',
    ) -> OperationStep:
        def execute():
            return self._recanonicalize(mapping_type)

        def rollback(result: RecanonicalizationResult):
            with session_scope() as session:
                RecordOperations.delete_by_ids(session, result.inserted)
                RecordOperations.insert_records(session, result.deleted)
            self.logger.debug(f"Restored {len(result.deleted)} record(s) after rollback")

        return OperationStep(name, execute=execute, rollback=rollback)

    def _recanonicalize(self, mapping_type: MappingType) -> RecanonicalizationResult:
        """Replace records whose raw label now resolves to a different value."""
        canonical_col, raw_col = DIMENSION_COLUMNS[mapping_type.value]
        result = RecanonicalizationResult(mapping_type.value)

        # Build the index outside the write session
        self.resolver.index(mapping_type)

        with session_scope() as session:
            changes: dict[tuple[str, str], str] = {}
            for raw, current, source, _count in RecordOperations.label_inventory(session, mapping_type.value):
                target = self.resolver.resolve(raw, source, mapping_type) or raw
                if target != current:
                    changes[(raw, source)] = target
            if not changes:
                return result

            candidates = RecordOperations.records_with_raw_labels(
                session, mapping_type.value, {raw for raw, _ in changes}
            )
            replacements = []
            stale_ids = []
            for record in candidates:
                target = changes.get((getattr(record, raw_col), record.survey_source))
                if target is None:
                    continue
                stale_ids.append(record.record_id)
                replacements.append(
                    NormalizedRecordData.from_orm(record).with_dimensions(**{canonical_col: target})
                )

            result.deleted = RecordOperations.delete_by_ids(session, stale_ids)
            result.inserted = RecordOperations.insert_records(
                session, [record.to_row() for record in replacements]
            )

        self.logger.info(
            f"Re-canonicalized {result.changed} {mapping_type.value} record(s)"
        )
        return result

    def _variable_for(self, metric: Union[Metric, str]) -> str:
        variable = resolve_variable(metric)
        if variable in METRIC_VARIABLE_NAMES.values():
            return self.resolver.resolve(variable, None, MappingType.VARIABLE) or variable
        return variable

    def _threshold(self, threshold: Optional[float]) -> float:
        if threshold is None:
            return self.config.get('suggestion_threshold')
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be between 0 and 1, got {threshold}")
        return threshold

    @staticmethod
    def _validate_survey(survey_source: str, survey_year) -> tuple[str, int]:
        errors = []
        source = ' '.join(str(survey_source or '').split())
        if not source:
            errors.append(FieldError('survey_source', 'missing or empty', survey_source))
        try:
            year = int(survey_year)
        except (TypeError, ValueError):
            errors.append(FieldError('survey_year', 'not a year', survey_year))
            year = 0
        if errors:
            raise ValidationError("Invalid survey metadata", field_errors=errors)
        return source, year


__all__ = [
    'SurveyBlendEngine',
    'IngestionResult',
    'RecanonicalizationResult',
    'ApplyLearnedResult',
]
