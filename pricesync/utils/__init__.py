# pricesync/utils/__init__.py
"""
Utility modules for pricesync.

This package contains cross-cutting utilities used throughout the engine:
- logging: Logging configuration and setup with run ID support
- context: Job run context (run ID, job name)
- date_utils: UTC datetime helpers (rounding to interval boundaries)

Usage:
    from pricesync.utils import setup_logging
    from pricesync.utils import get_run_id, set_run_id
    from pricesync.utils.date_utils import round_down
"""

from pricesync.utils.context import (
    get_run_id,
    set_run_id,
    clear_run_id,
    new_run_id,
    get_job_name,
    set_job_name,
)
from pricesync.utils.logging import setup_logging

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_run_id",
    "set_run_id",
    "clear_run_id",
    "new_run_id",
    "get_job_name",
    "set_job_name",
]
