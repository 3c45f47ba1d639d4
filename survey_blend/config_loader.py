# Path: survey_blend/config_loader.py
"""
Settings for survey_blend.

Every tunable (matching thresholds, verification retries, lock
timeouts, blend defaults, database location) is read from
SURVEY_BLEND_* environment variables, optionally seeded from a .env
file at the project root. One shared ConfigLoader instance serves the
whole process.
"""

import os
from typing import Optional, Any, Callable
from pathlib import Path
from dotenv import load_dotenv


ENV_PREFIX = 'SURVEY_BLEND_'

# Logging
DEFAULT_LOG_LEVEL: str = 'INFO'

# Label matching
DEFAULT_SUGGESTION_THRESHOLD: float = 0.6
DEFAULT_CONFIRMATION_FLOOR: float = 0.85

# Atomic operations and locks
DEFAULT_VERIFY_MAX_ATTEMPTS: int = 3
DEFAULT_LOCK_TIMEOUT_SECONDS: float = 0.0

# Blending
DEFAULT_BLEND_METHOD: str = 'weighted'

# Storage
DEFAULT_DB_NAME: str = 'survey_blend'

_TRUE_WORDS = frozenset({'true', '1', 'yes', 'on'})


class ConfigLoader:
    """
    Process-wide settings for survey blending.

    Values are typed on load; a malformed number falls back to its
    default, an out-of-range threshold is rejected.

    Example:
        config = ConfigLoader()
        floor = config.get('confirmation_floor')
    """

    _instance: Optional['ConfigLoader'] = None
    _initialized: bool = False

    def __new__(cls) -> 'ConfigLoader':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if ConfigLoader._initialized:
            return

        dotenv_file = Path(__file__).resolve().parent.parent / '.env'
        if dotenv_file.exists():
            load_dotenv(dotenv_path=dotenv_file, interpolate=True)

        self._config = self._read_settings()
        ConfigLoader._initialized = True

    def _read_settings(self) -> dict[str, Any]:
        """
        Read every known setting from the environment.

        Raises:
            ValueError: If a matching threshold is outside [0, 1]
        """
        return {
            # --- runtime ---
            'environment': self._text('ENVIRONMENT', 'development'),
            'debug': self._flag('DEBUG', False),

            # --- logging ---
            'log_dir': self._path('LOG_DIR'),
            'log_level': self._text('LOG_LEVEL', DEFAULT_LOG_LEVEL),
            'log_console': self._flag('LOG_CONSOLE', True),

            # --- label matching ---
            'suggestion_threshold': self._fraction(
                'SUGGESTION_THRESHOLD', DEFAULT_SUGGESTION_THRESHOLD
            ),
            'confirmation_floor': self._fraction(
                'CONFIRMATION_FLOOR', DEFAULT_CONFIRMATION_FLOOR
            ),

            # --- atomic operations and locks ---
            'verify_max_attempts': self._number(
                'VERIFY_MAX_ATTEMPTS', DEFAULT_VERIFY_MAX_ATTEMPTS, int
            ),
            'lock_timeout_seconds': self._number(
                'LOCK_TIMEOUT_SECONDS', DEFAULT_LOCK_TIMEOUT_SECONDS, float
            ),

            # --- blending ---
            'default_blend_method': self._text('DEFAULT_BLEND_METHOD', DEFAULT_BLEND_METHOD),
            'renormalize_sparse_percentiles': self._flag('RENORMALIZE_SPARSE_PERCENTILES', False),

            # --- storage ---
            # A full URL (sqlite:///..., postgresql://..., ':memory:') overrides
            # the discrete PostgreSQL settings below.
            'database_url': self._text('DATABASE_URL') or None,
            'db_host': self._text('DB_HOST', 'localhost'),
            'db_port': self._number('DB_PORT', 5432, int),
            'db_name': self._text('DB_NAME', DEFAULT_DB_NAME),
            'db_user': self._text('DB_USER'),
            'db_password': self._text('DB_PASSWORD'),
            'db_pool_size': self._number('DB_POOL_SIZE', 5, int),
            'db_pool_max_overflow': self._number('DB_POOL_MAX_OVERFLOW', 10, int),
            'db_pool_timeout': self._number('DB_POOL_TIMEOUT', 30, int),
            'db_pool_recycle': self._number('DB_POOL_RECYCLE', 3600, int),
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Return the setting named ``key``, or ``default`` when unknown."""
        return self._config.get(key, default)

    @staticmethod
    def _raw(name: str) -> Optional[str]:
        return os.getenv(ENV_PREFIX + name)

    def _text(self, name: str, default: str = '') -> str:
        value = self._raw(name)
        return default if value is None else value

    def _number(self, name: str, default, cast: Callable[[str], Any]):
        value = self._raw(name)
        if value is None:
            return default
        try:
            return cast(value)
        except ValueError:
            return default

    def _fraction(self, name: str, default: float) -> float:
        value = self._number(name, default, float)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{ENV_PREFIX}{name} must be between 0 and 1, got {value}")
        return value

    def _flag(self, name: str, default: bool) -> bool:
        value = self._raw(name)
        if value is None:
            return default
        return value.strip().lower() in _TRUE_WORDS

    def _path(self, name: str) -> Optional[Path]:
        value = self._raw(name)
        if not value:
            return None
        # ${VAR} references left over from the shell
        return Path(os.path.expandvars(value))

    def get_db_connection_string(self) -> str:
        """PostgreSQL URL assembled from the db_* settings."""
        cfg = self._config
        credentials = f"{cfg['db_user']}:{cfg['db_password']}"
        location = f"{cfg['db_host']}:{cfg['db_port']}/{cfg['db_name']}"
        return f"postgresql://{credentials}@{location}"

    def __repr__(self) -> str:
        backend = 'url' if self._config.get('database_url') else 'postgresql'
        return f"ConfigLoader(environment={self._config.get('environment')}, database={backend})"


__all__ = ['ConfigLoader']
