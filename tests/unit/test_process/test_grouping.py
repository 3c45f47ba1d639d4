# Path: tests/unit/test_process/test_grouping.py
"""
Unit tests for report grouping.
"""

import pytest

from survey_blend.constants import GroupingField
from survey_blend.process.blending.grouping import (
    GROUPING_PRESETS,
    GroupingSpec,
    group_records,
    resolve_grouping,
)
from survey_blend.process.normalizer.models import NormalizedRecordData


def make_record(specialty='Cardiology', region='West', source='SourceA', year=2023, **kwargs):
    return NormalizedRecordData(
        survey_source=source,
        survey_year=year,
        specialty=specialty,
        raw_specialty=specialty,
        provider_type=kwargs.pop('provider_type', 'Physician'),
        raw_provider_type='Physician',
        region=region,
        raw_region=region or '',
        variable='Total Cash Compensation',
        raw_variable='Total Cash Compensation',
        **kwargs,
    )


class TestGroupingSpec:
    """Tests for GroupingSpec."""

    def test_specialty_always_included_first(self):
        spec = GroupingSpec.of(['year', 'region'])

        assert spec.fields == (GroupingField.SPECIALTY, GroupingField.REGION, GroupingField.YEAR)

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            GroupingSpec.of(['color'])

    def test_flattened_key(self):
        spec = GroupingSpec.of(['region'])
        key = spec.key_for(make_record())

        assert key == ('Cardiology', 'West')
        assert spec.label_for(key) == 'Cardiology|West'
        assert spec.describe(key) == {'specialty': 'Cardiology', 'region': 'West'}

    def test_missing_region_uses_all_regions(self):
        spec = GroupingSpec.of(['region'])

        assert spec.key_for(make_record(region='')) == ('Cardiology', 'All Regions')

    def test_year_is_text(self):
        spec = GroupingSpec.of(['source', 'year'])

        assert spec.key_for(make_record()) == ('Cardiology', 'SourceA', '2023')


class TestResolveGrouping:
    """Tests for resolve_grouping()."""

    def test_default_is_specialty(self):
        assert resolve_grouping(None) == GROUPING_PRESETS['specialty']

    def test_preset(self):
        assert resolve_grouping('specialty_region').fields == (
            GroupingField.SPECIALTY, GroupingField.REGION,
        )

    def test_field_list(self):
        assert resolve_grouping(['provider_type']) == GROUPING_PRESETS['specialty_provider_type']

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            resolve_grouping('by_color')


class TestGroupRecords:
    """Tests for group_records()."""

    def test_first_seen_order(self):
        records = [
            make_record('Pediatrics'),
            make_record('Cardiology', source='SourceA'),
            make_record('Cardiology', source='SourceB'),
        ]

        groups = group_records(records, GroupingSpec.of([]))

        assert list(groups) == [('Pediatrics',), ('Cardiology',)]
        assert [r.survey_source for r in groups[('Cardiology',)]] == ['SourceA', 'SourceB']
