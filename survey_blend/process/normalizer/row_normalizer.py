# Path: survey_blend/process/normalizer/row_normalizer.py
"""
Row Normalizer

Transforms wide survey rows (one row per specialty / provider type /
region, one column per metric x percentile) into long-format records
(one record per metric that reported at least one percentile).

Rules:
- a metric with every percentile absent produces no record
- absent cells stay None, they are never defaulted to zero
- specialty, provider type and region go through the Mapping Resolver;
  unresolved values are kept verbatim and reported as unmapped
- rows missing specialty, provider type or region are rejected with a
  ValidationError naming the fields; the batch continues
"""

import math
from typing import Any, Iterable, Optional

from survey_blend.constants import (
    METRIC_VARIABLE_NAMES,
    MappingType,
    Metric,
    TRACKED_PERCENTILES,
)
from survey_blend.core.errors import FieldError, ResolutionMiss, ValidationError
from survey_blend.core.logger.ipo_logging import get_input_logger
from survey_blend.process.matcher.resolver import MappingResolver
from survey_blend.process.normalizer.column_aliases import ColumnKind, parse_header
from survey_blend.process.normalizer.models import (
    NormalizationResult,
    NormalizedRecordData,
    RejectedRow,
)
from survey_blend.process.normalizer.value_parser import parse_count, parse_numeric, parse_text


REQUIRED_FIELDS = ('specialty', 'provider_type', 'region')

# Row field -> mapping type used to canonicalize it
FIELD_MAPPING_TYPES = {
    'specialty': MappingType.SPECIALTY,
    'provider_type': MappingType.PROVIDER_TYPE,
    'region': MappingType.REGION,
}


def _json_safe(row: dict) -> dict:
    """Copy of a raw row that the JSON column can store."""
    safe = {}
    for key, value in row.items():
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            value = None
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        safe[str(key)] = value
    return safe


class RowNormalizer:
    """
    Wide-to-long transformer for survey rows.

    Example:
        normalizer = RowNormalizer(resolver)
        result = normalizer.normalize_rows(
            rows=[{'Specialty': 'Cardio', 'Region': 'West',
                   'Provider Type': 'Physician', 'TCC_p50': '$400,000',
                   'n_incumbents': 10}],
            survey_source='SourceA',
            survey_year=2023,
        )
        result.accepted[0].variable  # 'Total Cash Compensation'
    """

    def __init__(self, resolver: MappingResolver):
        self.resolver = resolver
        self.logger = get_input_logger('row_normalizer')

    def normalize_rows(
        self,
        rows: Iterable[dict],
        survey_source: str,
        survey_year: int,
        provider_type: Optional[str] = None,
    ) -> NormalizationResult:
        """
        Normalize a batch of raw rows.

        Args:
            rows: Flat key-value rows
            survey_source: Source survey identifier
            survey_year: Survey year
            provider_type: Survey-level provider type for rows without one

        Returns:
            NormalizationResult with accepted records, rejected rows and
            unmapped labels (row counts aggregated per label and source)
        """
        result = NormalizationResult()
        misses: dict[tuple[str, str], int] = {}
        labels: dict[tuple[str, str], str] = {}

        for row_index, row in enumerate(rows):
            result.rows_processed += 1
            try:
                records, row_misses = self.normalize_row(
                    row, survey_source, survey_year,
                    row_index=row_index, provider_type=provider_type,
                )
            except ValidationError as e:
                result.rejected.append(RejectedRow(row_index, dict(row), e))
                self.logger.warning(f"Row {row_index} rejected: {e.message}")
                continue

            result.accepted.extend(records)
            for miss in row_misses:
                key = (miss.mapping_type, miss.raw_label)
                misses[key] = misses.get(key, 0) + 1
                labels.setdefault(key, miss.raw_label)

        result.unmapped = [
            ResolutionMiss(
                mapping_type=mapping_type,
                raw_label=labels[(mapping_type, raw)],
                survey_source=survey_source,
                frequency=count,
            )
            for (mapping_type, raw), count in misses.items()
        ]

        self.logger.info(
            f"Normalized {survey_source}/{survey_year}: {result.rows_processed} row(s), "
            f"{len(result.accepted)} record(s), {len(result.rejected)} rejected, "
            f"{len(result.unmapped)} unmapped label(s)"
        )
        return result

    def normalize_row(
        self,
        row: dict,
        survey_source: str,
        survey_year: int,
        row_index: Optional[int] = None,
        provider_type: Optional[str] = None,
    ) -> tuple[list[NormalizedRecordData], list[ResolutionMiss]]:
        """
        Normalize a single raw row.

        Returns:
            (records, unresolved labels of this row)

        Raises:
            ValidationError: If specialty, provider type or region is missing
        """
        fields, samples, metric_samples, metrics = self._collect(row)

        if fields.get('provider_type') is None and provider_type:
            fields['provider_type'] = parse_text(provider_type)

        missing = [name for name in REQUIRED_FIELDS if fields.get(name) is None]
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                field_errors=[FieldError(name, 'missing or empty') for name in missing],
                row_index=row_index,
            )

        canonical: dict[str, str] = {}
        misses: list[ResolutionMiss] = []
        for name, mapping_type in FIELD_MAPPING_TYPES.items():
            raw = fields[name]
            resolved = self.resolver.resolve(raw, survey_source, mapping_type)
            if resolved is None:
                misses.append(ResolutionMiss(mapping_type.value, raw, survey_source))
                resolved = raw
            canonical[name] = resolved

        original = _json_safe(row)
        records = []
        for metric in Metric:
            values = metrics.get(metric, {})
            if not any(values.get(p) is not None for p in TRACKED_PERCENTILES):
                continue

            sample = {**samples, **metric_samples.get(metric, {})}
            raw_variable = METRIC_VARIABLE_NAMES[metric]
            variable = self.resolver.resolve(
                raw_variable, survey_source, MappingType.VARIABLE
            ) or raw_variable

            records.append(NormalizedRecordData(
                survey_source=survey_source,
                survey_year=survey_year,
                specialty=canonical['specialty'],
                raw_specialty=fields['specialty'],
                provider_type=canonical['provider_type'],
                raw_provider_type=fields['provider_type'],
                region=canonical['region'],
                raw_region=fields['region'],
                variable=variable,
                raw_variable=raw_variable,
                n_orgs=sample.get('n_orgs'),
                n_incumbents=sample.get('n_incumbents'),
                source_row_index=row_index,
                original_data=original,
                **{p: values.get(p) for p in TRACKED_PERCENTILES},
            ))

        if not records:
            self.logger.debug(f"Row {row_index} has no reportable metric values")
        return records, misses

    def _collect(self, row: dict) -> tuple[dict, dict, dict, dict]:
        """
        Sort a row's cells into fields, sample sizes and metric values.

        The first non-empty cell wins when several headers alias the same
        logical column.
        """
        fields: dict[str, Optional[str]] = {}
        samples: dict[str, float] = {}
        metric_samples: dict[Metric, dict[str, float]] = {}
        metrics: dict[Metric, dict[str, float]] = {}

        for header, value in row.items():
            spec = parse_header(str(header))
            if spec is None:
                continue

            if spec.kind == ColumnKind.FIELD:
                if fields.get(spec.name) is None:
                    fields[spec.name] = parse_text(value)

            elif spec.kind == ColumnKind.SAMPLE:
                target = samples if spec.metric is None else metric_samples.setdefault(spec.metric, {})
                self._set_first(target, spec.name, parse_count(value))

            else:
                self._set_first(metrics.setdefault(spec.metric, {}), spec.name, parse_numeric(value))

        return fields, samples, metric_samples, metrics

    @staticmethod
    def _set_first(target: dict, key: str, value: Any) -> None:
        if value is not None and key not in target:
            target[key] = value


__all__ = ['RowNormalizer', 'REQUIRED_FIELDS']
