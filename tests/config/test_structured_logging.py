"""
Tests for the JSON log formatter and command-scoped log context.
"""

import json
import logging
import sys
from uuid import uuid4

import pytest

from delivery_kernel.exceptions import ConflictError
from delivery_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _record(message="event", **extra):
    record = logging.LogRecord("delivery_kernel.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    def test_bind_restores_previous_values(self):
        with LogContext.bind(command="outer", actor_id="a1"):
            with LogContext.bind(command="inner", entity_id="e1"):
                assert LogContext.get_all() == {"command": "inner", "actor_id": "a1", "entity_id": "e1"}
            assert LogContext.get_all() == {"command": "outer", "actor_id": "a1"}
        assert LogContext.get_all() == {}

    def test_none_values_are_not_bound(self):
        with LogContext.bind(command="c", project_id=None):
            assert "project_id" not in LogContext.get_all()

    def test_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(correlation_id="x"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            with LogContext.bind(tenant="t"):
                pass

    def test_clear(self):
        with LogContext.bind(command="c"):
            LogContext.clear()
            assert LogContext.get_all() == {}


class TestStructuredFormatter:
    def test_context_and_extra_fields(self):
        with LogContext.bind(command="sign_baseline", correlation_id="corr-1"):
            line = StructuredFormatter().format(_record("baseline_signed", side="supplier"))
        entry = json.loads(line)
        assert entry["message"] == "baseline_signed"
        assert entry["level"] == "INFO"
        assert entry["command"] == "sign_baseline"
        assert entry["correlation_id"] == "corr-1"
        assert entry["side"] == "supplier"

    def test_kernel_error_fields(self):
        entity_id = uuid4()
        try:
            raise ConflictError(entity_type="Milestone", entity_id=entity_id)
        except ConflictError:
            record = logging.LogRecord(
                "delivery_kernel.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["exc_type"] == "ConflictError"
        assert entry["exc_entity_id"] == str(entity_id)
        assert "traceback" in entry

    def test_get_logger_namespace(self):
        assert get_logger("services.x").name == "delivery_kernel.services.x"
