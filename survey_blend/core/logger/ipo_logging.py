# Path: survey_blend/core/logger/ipo_logging.py
"""
Layered logging for survey_blend.

Loggers are named by pipeline layer: 'input.*' for row ingestion and
column parsing, 'process.*' for matching, the mapping registry,
consistency and blending, 'output.*' for reports and explanations.
With a log directory configured, each layer gets its own file next to
full_activity.log, which receives everything.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_FORMAT = '[%(levelname)s] %(name)s - %(message)s'

FULL_LOG_FILE = 'full_activity.log'
LAYER_LOG_FILES = {
    'input': 'input_activity.log',
    'process': 'process_activity.log',
    'output': 'output_activity.log',
}


class IPOFilter(logging.Filter):
    """Pass only records from one layer's logger tree."""

    def __init__(self, layer: str):
        super().__init__()
        self.layer = layer
        self._prefix = f'{layer}.'

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name == self.layer or record.name.startswith(self._prefix)


def _file_handler(path: Path, formatter: logging.Formatter) -> logging.FileHandler:
    handler = logging.FileHandler(path)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_ipo_logging(
    log_dir: Optional[Path] = None,
    log_level: str = 'INFO',
    console_output: bool = True,
) -> None:
    """
    Replace the root logger's handlers with the layered set.

    Args:
        log_dir: Where the per-layer files go; None logs to console only
        log_level: Root level name; unknown names mean INFO
        console_output: Also echo to stdout at ``log_level``
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        root.addHandler(_file_handler(log_dir / FULL_LOG_FILE, formatter))
        for layer, filename in LAYER_LOG_FILES.items():
            handler = _file_handler(log_dir / filename, formatter)
            handler.addFilter(IPOFilter(layer))
            root.addHandler(handler)

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(console)


def setup_logging_from_config(config=None) -> None:
    """Apply the log_dir, log_level and log_console settings."""
    if config is None:
        from survey_blend.config_loader import ConfigLoader
        config = ConfigLoader()

    setup_ipo_logging(
        log_dir=config.get('log_dir'),
        log_level=config.get('log_level', 'INFO'),
        console_output=config.get('log_console', True),
    )


def get_input_logger(name: str) -> logging.Logger:
    """Logger under 'input.', e.g. get_input_logger('row_normalizer')."""
    return logging.getLogger(f'input.{name}')


def get_process_logger(name: str) -> logging.Logger:
    """
    Logger under 'process.'.

    Example:
        logger = get_process_logger('blending.aggregator')
        logger.info("Blending 3 records")
    """
    return logging.getLogger(f'process.{name}')


def get_output_logger(name: str) -> logging.Logger:
    return logging.getLogger(f'output.{name}')


__all__ = [
    'IPOFilter',
    'setup_ipo_logging',
    'setup_logging_from_config',
    'get_input_logger',
    'get_process_logger',
    'get_output_logger',
]
