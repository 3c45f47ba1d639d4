# Path: survey_blend/process/blending/aggregator.py
"""
Blending Aggregator

Combines the records of one report group into a single output row.

Methods:
- none: no blended row, the caller renders records individually
- simple: every record weighs 1/n
- weighted: record i weighs incumbents_i / total incumbents; a total of
  zero falls back to simple (recorded on the result)

Per percentile, the blended value is the sum of value x weight over the
records that report it. Weights are not renormalized across the
reporting subset unless renormalization is switched on.
"""

from typing import Iterable, Optional, Sequence, Union

from survey_blend.config_loader import ConfigLoader
from survey_blend.constants import (
    BlendMethod,
    METRIC_VARIABLE_NAMES,
    Metric,
    TRACKED_PERCENTILES,
)
from survey_blend.core.logger.ipo_logging import get_process_logger
from survey_blend.process.blending.grouping import GroupingSpec, group_records, resolve_grouping
from survey_blend.process.blending.models import (
    BlendContribution,
    BlendedResult,
    Report,
    ReportGroup,
)
from survey_blend.process.normalizer.models import NormalizedRecordData


def resolve_variable(metric: Union[Metric, str]) -> str:
    """
    Map a metric key ('tcc') to its canonical variable name.

    Unknown keys are taken to be variable names already.
    """
    key = metric.value if isinstance(metric, Metric) else str(metric).lower()
    try:
        return METRIC_VARIABLE_NAMES[Metric(key)]
    except ValueError:
        return str(metric)


def validate_percentiles(percentiles: Optional[Iterable[str]]) -> tuple[str, ...]:
    """
    Check requested percentiles against the tracked set.

    Raises:
        ValueError: For an untracked percentile
    """
    if percentiles is None:
        return TRACKED_PERCENTILES
    selected = tuple(dict.fromkeys(percentiles))
    unknown = [p for p in selected if p not in TRACKED_PERCENTILES]
    if unknown:
        raise ValueError(f"Untracked percentile(s): {', '.join(unknown)}")
    return selected


def _sum_present(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    return sum(present) if present else None


class BlendingAggregator:
    """
    Multi-source percentile blending with provenance.

    Example:
        aggregator = BlendingAggregator()
        result = aggregator.blend(records, BlendMethod.WEIGHTED, ['p50'])
        result.percentiles['p50']  # 430000.0
        [c.weight for c in result.contributions]  # [0.25, 0.75]
    """

    def __init__(self, config: Optional[ConfigLoader] = None):
        self.config = config or ConfigLoader()
        self.logger = get_process_logger('blending.aggregator')

    def compute_weights(
        self,
        records: Sequence[NormalizedRecordData],
        method: BlendMethod,
    ) -> tuple[list[float], BlendMethod, bool]:
        """
        Weights for a group of records.

        Args:
            records: Contributing records
            method: SIMPLE or WEIGHTED

        Returns:
            (weights, effective method, fallback applied)
        """
        count = len(records)
        if count == 0:
            return [], method, False

        if method == BlendMethod.WEIGHTED:
            incumbents = [r.n_incumbents or 0.0 for r in records]
            total = sum(incumbents)
            if total > 0:
                return [n / total for n in incumbents], BlendMethod.WEIGHTED, False

            self.logger.debug(
                f"No incumbent data across {count} record(s); using simple average"
            )
            return [1.0 / count] * count, BlendMethod.SIMPLE, True

        return [1.0 / count] * count, BlendMethod.SIMPLE, False

    def blend(
        self,
        records: Sequence[NormalizedRecordData],
        method: Union[BlendMethod, str],
        percentiles: Optional[Iterable[str]] = None,
        group_key: Optional[dict[str, str]] = None,
        renormalize: Optional[bool] = None,
    ) -> Optional[BlendedResult]:
        """
        Blend one group of records.

        Args:
            records: Records of one group (same variable)
            method: Blending method
            percentiles: Percentiles to blend (default: all tracked)
            group_key: Grouping field -> value, copied onto the result
            renormalize: Renormalize weights per percentile across the
                records reporting it (default: configured flag)

        Returns:
            BlendedResult, or None for method 'none' or an empty group
        """
        method = BlendMethod(method)
        selected = validate_percentiles(percentiles)
        if method == BlendMethod.NONE or not records:
            return None
        if renormalize is None:
            renormalize = self.config.get('renormalize_sparse_percentiles', False)

        weights, effective, fallback = self.compute_weights(records, method)

        blended: dict[str, Optional[float]] = {}
        for name in selected:
            reporting = [
                (record.percentile(name), weight)
                for record, weight in zip(records, weights)
                if record.percentile(name) is not None
            ]
            if not reporting:
                blended[name] = None
                continue

            value = sum(v * w for v, w in reporting)
            if renormalize:
                weight_total = sum(w for _, w in reporting)
                value = value / weight_total if weight_total > 0 else None
            blended[name] = value

        contributions = [
            BlendContribution(
                record_id=record.record_id,
                survey_source=record.survey_source,
                survey_year=record.survey_year,
                raw_specialty=record.raw_specialty,
                n_orgs=record.n_orgs,
                n_incumbents=record.n_incumbents,
                percentiles=record.percentiles,
                weight=weight,
            )
            for record, weight in zip(records, weights)
        ]

        return BlendedResult(
            group_key=dict(group_key or {'specialty': records[0].specialty}),
            variable=records[0].variable,
            percentiles=blended,
            total_incumbents=_sum_present(r.n_incumbents for r in records),
            total_orgs=_sum_present(r.n_orgs for r in records),
            contributions=contributions,
            method=method,
            effective_method=effective,
            fallback_applied=fallback,
            renormalized=bool(renormalize),
        )

    def build_report(
        self,
        records: Iterable[NormalizedRecordData],
        metric: Union[Metric, str],
        grouping: Union[GroupingSpec, str, Iterable[str], None] = None,
        percentiles: Optional[Iterable[str]] = None,
        method: Union[BlendMethod, str, None] = None,
        renormalize: Optional[bool] = None,
        variable: Optional[str] = None,
    ) -> Report:
        """
        Group records and blend each group.

        Records of other variables are ignored. Groups with one record, or
        every group under method 'none', carry records but no blend.

        Args:
            records: Normalized records
            metric: Metric key ('tcc', 'wrvu', 'cf') or variable name
            grouping: GroupingSpec, preset name or field names
            percentiles: Percentiles to report
            method: Blending method (default: configured method)
            renormalize: Override the sparse-percentile flag
            variable: Exact stored variable name; skips the metric key lookup

        Returns:
            Report with groups in first-seen order
        """
        variable = variable or resolve_variable(metric)
        spec = resolve_grouping(grouping)
        selected = validate_percentiles(percentiles)
        method = BlendMethod(method or self.config.get('default_blend_method'))

        matching = [r for r in records if r.variable == variable]
        report = Report(
            variable=variable,
            method=method,
            percentiles=selected,
            grouping=tuple(f.value for f in spec.fields),
        )

        for key, members in group_records(matching, spec).items():
            described = spec.describe(key)
            blended = None
            if method != BlendMethod.NONE and len(members) > 1:
                blended = self.blend(members, method, selected, described, renormalize)
            report.groups.append(ReportGroup(
                key=spec.label_for(key),
                group_key=described,
                records=list(members),
                blended=blended,
            ))

        self.logger.info(
            f"Report '{variable}': {len(matching)} record(s) in {len(report.groups)} group(s), "
            f"{sum(1 for g in report.groups if g.is_blended)} blended ({method.value})"
        )
        return report


__all__ = ['BlendingAggregator', 'resolve_variable', 'validate_percentiles']
