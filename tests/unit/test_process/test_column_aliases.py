# Path: tests/unit/test_process/test_column_aliases.py
"""
Unit tests for column header parsing.
"""

import pytest

from survey_blend.constants import Metric
from survey_blend.process.normalizer.column_aliases import (
    ColumnKind,
    ColumnSpec,
    header_key,
    parse_header,
)


class TestHeaderKey:
    """Tests for header_key()."""

    def test_snake_case(self):
        assert header_key('Provider Type') == 'provider_type'
        assert header_key('TCC 50th %ile') == 'tcc_50th_ile'
        assert header_key('  wRVU-p90 ') == 'wrvu_p90'


class TestParseHeader:
    """Tests for parse_header()."""

    @pytest.mark.parametrize('header,name', [
        ('specialty', 'specialty'),
        ('Specialty Name', 'specialty'),
        ('Geographic Region', 'region'),
        ('region', 'region'),
        ('Provider Type', 'provider_type'),
    ])
    def test_fields(self, header, name):
        assert parse_header(header) == ColumnSpec(ColumnKind.FIELD, name)

    @pytest.mark.parametrize('header,name', [
        ('n_incumbents', 'n_incumbents'),
        ('Number of Incumbents', 'n_incumbents'),
        ('n_orgs', 'n_orgs'),
        ('Organizations', 'n_orgs'),
    ])
    def test_row_level_samples(self, header, name):
        assert parse_header(header) == ColumnSpec(ColumnKind.SAMPLE, name)

    @pytest.mark.parametrize('header,metric,percentile', [
        ('tcc_p50', Metric.TCC, 'p50'),
        ('TCC 25th %ile', Metric.TCC, 'p25'),
        ('TCC Median', Metric.TCC, 'p50'),
        ('Total Cash Compensation 90th Percentile', Metric.TCC, 'p90'),
        ('wrvu_p75', Metric.WRVU, 'p75'),
        ('Work RVUs p25', Metric.WRVU, 'p25'),
        ('p50_tcc', Metric.TCC, 'p50'),
        ('cf_p50', Metric.CF, 'p50'),
        ('TCC per wRVU p90', Metric.CF, 'p90'),
    ])
    def test_metric_percentiles(self, header, metric, percentile):
        assert parse_header(header) == ColumnSpec(ColumnKind.METRIC, percentile, metric)

    def test_metric_specific_sample(self):
        assert parse_header('wRVU n_incumbents') == ColumnSpec(
            ColumnKind.SAMPLE, 'n_incumbents', Metric.WRVU
        )

    @pytest.mark.parametrize('header', [
        'Notes', 'tcc_p10', 'tcc', 'tcc_mean', '', 'p50',
    ])
    def test_ignored(self, header):
        assert parse_header(header) is None
