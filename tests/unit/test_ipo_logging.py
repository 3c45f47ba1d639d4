# Path: tests/unit/test_ipo_logging.py
"""
Unit tests for IPO logging setup.
"""

import logging

import pytest

from survey_blend.core.logger.ipo_logging import (
    IPOFilter,
    get_input_logger,
    get_output_logger,
    get_process_logger,
    setup_ipo_logging,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger's handlers back after a setup call."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestLoggerNames:
    """Layer prefixes."""

    def test_prefixes(self):
        assert get_input_logger('ingestion').name == 'input.ingestion'
        assert get_process_logger('matcher.resolver').name == 'process.matcher.resolver'
        assert get_output_logger('report').name == 'output.report'


class TestIPOFilter:
    """Filtering by layer prefix."""

    def make_record(self, name):
        return logging.LogRecord(name, logging.INFO, __file__, 1, 'msg', None, None)

    def test_matches_layer_only(self):
        layer_filter = IPOFilter('process')

        assert layer_filter.filter(self.make_record('process.engine'))
        assert layer_filter.filter(self.make_record('process'))
        assert not layer_filter.filter(self.make_record('processing.other'))
        assert not layer_filter.filter(self.make_record('input.ingestion'))


class TestSetup:
    """File handler layout."""

    def test_layer_files(self, temp_dir, restore_root_logger):
        setup_ipo_logging(log_dir=temp_dir, log_level='DEBUG', console_output=False)

        get_input_logger('ingestion').info('row accepted')
        get_process_logger('engine').info('mapping created')
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert 'row accepted' in (temp_dir / 'input_activity.log').read_text()
        assert 'row accepted' not in (temp_dir / 'process_activity.log').read_text()
        assert 'mapping created' in (temp_dir / 'process_activity.log').read_text()
        full = (temp_dir / 'full_activity.log').read_text()
        assert 'row accepted' in full and 'mapping created' in full

    def test_console_only(self, restore_root_logger):
        setup_ipo_logging(log_dir=None, log_level='WARNING')

        root = logging.getLogger()

        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
