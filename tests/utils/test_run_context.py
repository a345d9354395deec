# tests/utils/test_run_context.py
"""
Tests for run ID context and its logging integration.
"""

import json
import logging

from pricesync.utils.context import (
    clear_run_id,
    get_job_name,
    get_run_id,
    new_run_id,
    set_job_name,
    set_run_id,
)
from pricesync.utils.logging import NO_RUN_ID, JsonFormatter, RunIdFilter


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="pricesync.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )


class TestRunContext:
    """Tests for the context variables."""

    def test_set_and_clear_run_id(self):
        """Should store and clear the run ID."""
        set_run_id("abc")
        assert get_run_id() == "abc"

        clear_run_id()
        assert get_run_id() is None

    def test_new_run_ids_are_unique(self):
        """Should generate a different ID each time."""
        assert new_run_id() != new_run_id()

    def test_job_name(self):
        """Should store the running job's name."""
        set_job_name("latest_prices")
        try:
            assert get_job_name() == "latest_prices"
        finally:
            set_job_name(None)


class TestRunIdFilter:
    """Tests for RunIdFilter and JsonFormatter."""

    def test_filter_adds_run_id(self):
        """Should attach the current run ID to records."""
        set_run_id("run-1")
        try:
            record = _record()
            assert RunIdFilter().filter(record) is True
            assert record.run_id == "run-1"
        finally:
            clear_run_id()

    def test_filter_placeholder_without_run(self):
        """Should use the placeholder outside of a job run."""
        clear_run_id()
        record = _record()
        RunIdFilter().filter(record)
        assert record.run_id == NO_RUN_ID

    def test_json_formatter_output(self):
        """Should emit a JSON document with run ID and message."""
        set_run_id("run-2")
        set_job_name("split_fetch")
        try:
            record = _record("split detected")
            RunIdFilter().filter(record)
            entry = json.loads(JsonFormatter().format(record))
        finally:
            clear_run_id()
            set_job_name(None)

        assert entry["run_id"] == "run-2"
        assert entry["job"] == "split_fetch"
        assert entry["message"] == "split detected"
        assert entry["level"] == "INFO"
