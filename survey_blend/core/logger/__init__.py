# Path: survey_blend/core/logger/__init__.py
"""
survey_blend Logger Package

IPO-aware logging for the survey blending core.

Provides separate log streams for:
- INPUT layer (row ingestion)
- PROCESS layer (matching, registry, consistency, blending)
- OUTPUT layer (reports)
"""

from .ipo_logging import (
    IPOFilter,
    setup_ipo_logging,
    setup_logging_from_config,
    get_input_logger,
    get_process_logger,
    get_output_logger,
)

__all__ = [
    'IPOFilter',
    'setup_ipo_logging',
    'setup_logging_from_config',
    'get_input_logger',
    'get_process_logger',
    'get_output_logger',
]
