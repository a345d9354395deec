# pricesync/utils/context.py
"""
Job run context for pricesync.

This module provides context storage for run-scoped data:
- Run ID for tracing all log lines of one job execution
- Name of the job currently executing

Uses Python's contextvars for async-safe storage that automatically
propagates through async/await calls, so concurrent entity workers
spawned by a job share the job's run ID.

Usage:
    from pricesync.utils.context import get_run_id, set_run_id

    # At job start
    set_run_id("4f1c2a...")

    # In any service/provider
    run_id = get_run_id()  # Returns "4f1c2a..."
"""

import uuid
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

# Run ID for job tracing
_run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)

# Name of the running job
_job_name_var: ContextVar[str | None] = ContextVar("job_name", default=None)


# =============================================================================
# RUN ID
# =============================================================================

def new_run_id() -> str:
    """Generate a fresh run ID."""
    return uuid.uuid4().hex


def get_run_id() -> str | None:
    """
    Get the current job run ID.

    Returns:
        The run ID for the current job execution, or None if not set.
    """
    return _run_id_var.get()


def set_run_id(run_id: str) -> None:
    """
    Set the run ID for the current job execution.

    Args:
        run_id: Unique identifier for this run
    """
    _run_id_var.set(run_id)


def clear_run_id() -> None:
    """Clear the run ID at the end of a job execution."""
    _run_id_var.set(None)


# =============================================================================
# JOB NAME
# =============================================================================

def get_job_name() -> str | None:
    return _job_name_var.get()


def set_job_name(job_name: str | None) -> None:
    _job_name_var.set(job_name)
