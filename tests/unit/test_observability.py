"""Unit tests for structured logging utilities in ``observability``.

Validates the null handler, trace binding, and event construction behaviour
downstream consumers rely on when attaching their own handlers.
"""

from __future__ import annotations

import logging

import pytest

from app_scoped_config import bind_trace_id, get_logger
from app_scoped_config.observability import TRACE_ID, log_info, log_warning, make_event, new_trace_id


def test_null_handler_present() -> None:
    """Package logger should always include a NullHandler to avoid surprises."""

    logger = get_logger()
    assert any(isinstance(handler, logging.NullHandler) for handler in logger.handlers)


def test_trace_id_in_log(caplog: pytest.LogCaptureFixture) -> None:
    """Structured logs should include the bound trace identifier and contextual fields."""

    caplog.set_level(logging.INFO, logger="app_scoped_config")
    bind_trace_id("trace-123")
    log_info("configuration_merged", source="app-env-vars", path=None)
    assert caplog.records
    record = caplog.records[-1]
    assert getattr(record, "context") == {"trace_id": "trace-123", "source": "app-env-vars", "path": None}


def test_disabled_level_emits_nothing(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="app_scoped_config")
    log_warning("source_read_failed", source="remote-service")
    assert not [record for record in caplog.records if record.name == "app_scoped_config"]


def test_bind_trace_id_clears_context() -> None:
    """Clearing the trace ID should reset the context variable to None."""

    bind_trace_id("trace-temp")
    bind_trace_id(None)
    assert TRACE_ID.get() is None


def test_new_trace_id_binds_fresh_identifier() -> None:
    first = new_trace_id()
    second = new_trace_id()
    assert first != second
    assert TRACE_ID.get() == second
    bind_trace_id(None)


def test_make_event_merges_optional_payload() -> None:
    """make_event should merge optional metadata without mutating base keys."""

    event = make_event("app-env-vars", None, {"keys": 3})
    assert event == {"source": "app-env-vars", "path": None, "keys": 3}
