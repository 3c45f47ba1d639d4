# Path: survey_blend/database/models/base.py
"""
Storage engine for mappings, learned corrections and survey records.

One module-level engine backs every session. SQLite is the usual
backend (in-memory under test, a file otherwise); PostgreSQL is used
when neither an explicit URL nor SURVEY_BLEND_DATABASE_URL names a
SQLite target.
"""

import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool

from survey_blend.config_loader import ConfigLoader


logger = logging.getLogger('process.database')

Base = declarative_base()

_engine: Optional[Engine] = None
_SessionFactory = None
_database_type: Optional[str] = None

_IN_MEMORY_URLS = (':memory:', 'sqlite://', 'sqlite:///:memory:')


def _sqlite_memory_engine() -> Engine:
    # StaticPool keeps the single connection alive; every session sees the same data
    return create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )


def _sqlite_file_engine(url: str) -> Engine:
    if ':///' in url:
        Path(url.split('///', 1)[1]).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args={'check_same_thread': False})


def _postgresql_engine(url: Optional[str]) -> Engine:
    config = ConfigLoader()
    return create_engine(
        url or config.get_db_connection_string(),
        poolclass=QueuePool,
        pool_size=config.get('db_pool_size', 5),
        max_overflow=config.get('db_pool_max_overflow', 10),
        pool_timeout=config.get('db_pool_timeout', 30),
        pool_recycle=config.get('db_pool_recycle', 3600),
    )


def initialize_engine(db_url: Optional[str] = None) -> None:
    """
    Create the shared engine and session factory.

    The URL comes from ``db_url``, else SURVEY_BLEND_DATABASE_URL, else
    the db_* PostgreSQL settings. ':memory:' gives a private SQLite
    database. A second call while an engine exists is ignored.

    Example:
        initialize_engine(':memory:')
        initialize_engine('sqlite:///data/survey_blend.db')
    """
    global _engine, _SessionFactory, _database_type

    if _engine is not None:
        logger.warning("Storage engine already initialized, keeping the existing one")
        return

    url = db_url if db_url is not None else ConfigLoader().get('database_url')

    if url in _IN_MEMORY_URLS:
        _engine, _database_type = _sqlite_memory_engine(), 'sqlite'
        where = 'in-memory'
    elif url and url.startswith('sqlite'):
        _engine, _database_type = _sqlite_file_engine(url), 'sqlite'
        where = _engine.url.database
    else:
        _engine, _database_type = _postgresql_engine(url), 'postgresql'
        where = f"{_engine.url.host}:{_engine.url.port}"

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info(f"Storage ready: {_database_type} ({where})")


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("No storage engine; call initialize_engine() first")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("No session factory; call initialize_engine() first")
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    One unit of work: commit on success, roll back and re-raise on error.

    Example:
        with session_scope() as session:
            MappingOperations.create_mapping(session, 'specialty', 'Cardiology', [])
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create any missing tables. Existing tables are left alone."""
    # Importing the model modules registers their tables on Base.metadata
    from survey_blend.database.models import standardized_mappings, learned_mappings, normalized_records  # noqa: F401

    Base.metadata.create_all(get_engine())
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


def drop_all_tables() -> None:
    """Drop every table, data included."""
    Base.metadata.drop_all(get_engine())
    logger.warning("All survey_blend tables dropped")


def reset_engine() -> None:
    """Dispose of the engine so initialize_engine() can run again."""
    global _engine, _SessionFactory, _database_type
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
    _database_type = None


def get_database_type() -> Optional[str]:
    """'sqlite', 'postgresql', or None before initialization."""
    return _database_type


def get_connection_info() -> dict:
    """Backend and URL of the live engine, password masked."""
    if _engine is None:
        return {'status': 'not_initialized'}

    return {
        'status': 'connected',
        'type': _database_type,
        'url': _engine.url.render_as_string(hide_password=True),
    }


__all__ = [
    'Base',
    'initialize_engine',
    'get_engine',
    'get_session',
    'session_scope',
    'create_all_tables',
    'drop_all_tables',
    'reset_engine',
    'get_database_type',
    'get_connection_info',
]
