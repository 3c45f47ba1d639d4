# Path: tests/conftest.py
"""
Shared fixtures: SURVEY_BLEND_* environment, a throwaway database per
test, an event-loop runner and a log capture.
"""

import asyncio
import logging
import os
import sys
import tempfile
from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from survey_blend.config_loader import ConfigLoader
from survey_blend.database.models.base import (
    create_all_tables,
    initialize_engine,
    reset_engine,
    session_scope,
)

# tests/fixtures is imported as 'fixtures'
sys.path.insert(0, str(Path(__file__).parent))


TEST_SETTINGS = {
    'ENVIRONMENT': 'test',
    'DEBUG': 'true',
    'DATABASE_URL': ':memory:',
    'DB_HOST': 'localhost',
    'DB_PORT': '5432',
    'DB_NAME': 'survey_blend_test',
    'DB_USER': 'test_user',
    'DB_PASSWORD': 'test_pass',
    'SUGGESTION_THRESHOLD': '0.7',
    'CONFIRMATION_FLOOR': '0.9',
    'VERIFY_MAX_ATTEMPTS': '2',
    'LOCK_TIMEOUT_SECONDS': '5',
    'DEFAULT_BLEND_METHOD': 'simple',
}

CONFIG_DEFAULTS = {
    'environment': 'test',
    'debug': True,
    'suggestion_threshold': 0.6,
    'confirmation_floor': 0.85,
    'verify_max_attempts': 3,
    'lock_timeout_seconds': 0.0,
    'default_blend_method': 'weighted',
    'renormalize_sparse_percentiles': False,
}


@pytest.fixture
def mock_env_vars():
    """TEST_SETTINGS exported under the SURVEY_BLEND_ prefix."""
    env_vars = {f'SURVEY_BLEND_{name}': value for name, value in TEST_SETTINGS.items()}
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db():
    """Fresh in-memory database for one test."""
    reset_engine()
    initialize_engine(':memory:')
    create_all_tables()
    yield
    reset_engine()


@pytest.fixture
def db_session(db):
    """Session on the in-memory database, committed at the end of the test."""
    with session_scope() as session:
        yield session


@pytest.fixture
def resolver(db):
    from survey_blend.process.matcher.resolver import MappingResolver
    return MappingResolver()


@pytest.fixture
def mock_config():
    """Stand-in ConfigLoader answering from CONFIG_DEFAULTS."""
    config = MagicMock(spec=ConfigLoader)
    config.get.side_effect = lambda key, default=None: CONFIG_DEFAULTS.get(key, default)
    return config


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run


@pytest.fixture
def capture_logs():
    """Everything logged at DEBUG and above during the test, as a StringIO."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setLevel(logging.DEBUG)

    root = logging.getLogger()
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    try:
        yield buffer
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Each test builds its own ConfigLoader from the current environment."""
    ConfigLoader._instance = None
    ConfigLoader._initialized = False
    yield
    ConfigLoader._instance = None
    ConfigLoader._initialized = False
