# Path: survey_blend/process/blending/grouping.py
"""
Report Grouping

Composite grouping keys for report generation. Specialty is always part
of the key; region, provider type, source and year are optional.

Flattened keys read "specialty|region|provider_type|source|year" with
only the selected fields present, in that order.
"""

from dataclasses import dataclass
from typing import Iterable, Union

from survey_blend.constants import (
    ALL_REGIONS_LABEL,
    GROUP_KEY_SEPARATOR,
    GroupingField,
    UNKNOWN_LABEL,
)
from survey_blend.process.normalizer.models import NormalizedRecordData


# Canonical field order within a key
FIELD_ORDER = (
    GroupingField.SPECIALTY,
    GroupingField.REGION,
    GroupingField.PROVIDER_TYPE,
    GroupingField.SOURCE,
    GroupingField.YEAR,
)


@dataclass(frozen=True)
class GroupingSpec:
    """
    Which fields distinguish report groups.

    Attributes:
        fields: Selected fields in canonical order (specialty always first)
    """
    fields: tuple[GroupingField, ...]

    @classmethod
    def of(cls, fields: Iterable[Union[GroupingField, str]]) -> 'GroupingSpec':
        """
        Build a spec from field names, adding specialty and ordering.

        Raises:
            ValueError: For an unknown field name
        """
        selected = {GroupingField(f) for f in fields}
        selected.add(GroupingField.SPECIALTY)
        return cls(tuple(f for f in FIELD_ORDER if f in selected))

    def key_for(self, record: NormalizedRecordData) -> tuple[str, ...]:
        """Composite key of a record."""
        return tuple(_field_value(record, f) for f in self.fields)

    def label_for(self, key: tuple[str, ...]) -> str:
        """Flattened key, e.g. 'Cardiology|West'."""
        return GROUP_KEY_SEPARATOR.join(key)

    def describe(self, key: tuple[str, ...]) -> dict[str, str]:
        """Key as {field name: value}."""
        return {f.value: value for f, value in zip(self.fields, key)}


def _field_value(record: NormalizedRecordData, field: GroupingField) -> str:
    if field == GroupingField.SPECIALTY:
        return record.specialty or record.raw_specialty or UNKNOWN_LABEL
    if field == GroupingField.REGION:
        return record.region or ALL_REGIONS_LABEL
    if field == GroupingField.PROVIDER_TYPE:
        return record.provider_type or UNKNOWN_LABEL
    if field == GroupingField.SOURCE:
        return record.survey_source or UNKNOWN_LABEL
    return str(record.survey_year) if record.survey_year is not None else UNKNOWN_LABEL


GROUPING_PRESETS: dict[str, GroupingSpec] = {
    'specialty': GroupingSpec.of([]),
    'specialty_region': GroupingSpec.of(['region']),
    'specialty_provider_type': GroupingSpec.of(['provider_type']),
    'specialty_region_provider_type': GroupingSpec.of(['region', 'provider_type']),
    'specialty_provider_type_source_year': GroupingSpec.of(['provider_type', 'source', 'year']),
    'full': GroupingSpec.of(['region', 'provider_type', 'source', 'year']),
}


def resolve_grouping(grouping: Union[GroupingSpec, str, Iterable[str], None]) -> GroupingSpec:
    """
    Accept a spec, a preset name or a list of field names.

    Raises:
        ValueError: For an unknown preset or field name
    """
    if grouping is None:
        return GROUPING_PRESETS['specialty']
    if isinstance(grouping, GroupingSpec):
        return grouping
    if isinstance(grouping, str):
        if grouping in GROUPING_PRESETS:
            return GROUPING_PRESETS[grouping]
        raise ValueError(f"Unknown grouping preset: {grouping}")
    return GroupingSpec.of(grouping)


def group_records(
    records: Iterable[NormalizedRecordData],
    grouping: GroupingSpec,
) -> dict[tuple[str, ...], list[NormalizedRecordData]]:
    """
    Partition records by composite key.

    Returns:
        Groups in first-seen order, records in input order
    """
    groups: dict[tuple[str, ...], list[NormalizedRecordData]] = {}
    for record in records:
        groups.setdefault(grouping.key_for(record), []).append(record)
    return groups


__all__ = [
    'GroupingSpec',
    'GROUPING_PRESETS',
    'FIELD_ORDER',
    'resolve_grouping',
    'group_records',
]
