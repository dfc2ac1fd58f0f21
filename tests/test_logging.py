"""
Tests: log context binding, ContextFilter and the two formatters.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest
from flask import g

from conftest import NOW, days, make_document, make_user
from doclife.middleware.logging_config import (
    ContextFilter,
    JSONFormatter,
    ReadableFormatter,
    current_log_context,
    log_context,
)
from doclife.models import db
from doclife.models.scheduling import ScheduledTask
from doclife.services import scheduler_service
from doclife.services.alert_engine import ExpirationAlertService
from doclife.services.scheduler_service import SchedulerService, TaskResult


def _record(msg="hello", **extra):
    record = logging.getLogger("doclife.test").makeRecord(
        "doclife.test", logging.INFO, __file__, 1, msg, (), None, extra=extra or None,
    )
    ContextFilter().filter(record)
    return record


# ═══════════════════════════════════════════════════════════════════════════
#  log_context
# ═══════════════════════════════════════════════════════════════════════════

class TestLogContext:
    def test_binds_inside_block_only(self):
        with log_context(task_id=7, task_type="backup"):
            assert current_log_context() == {"task_id": 7, "task_type": "backup"}
        assert current_log_context() == {}

    def test_nested_blocks_merge_and_unwind(self):
        with log_context(task_id=7):
            with log_context(document_id=3):
                assert current_log_context() == {"task_id": 7, "document_id": 3}
            assert current_log_context() == {"task_id": 7}

    def test_none_values_are_not_bound(self):
        with log_context(task_id=None, document_id=4):
            assert current_log_context() == {"document_id": 4}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            with log_context(customer_id=1):
                pass

    def test_unwinds_on_error(self):
        with pytest.raises(RuntimeError):
            with log_context(document_id=9):
                raise RuntimeError("boom")
        assert current_log_context() == {}


# ═══════════════════════════════════════════════════════════════════════════
#  ContextFilter
# ═══════════════════════════════════════════════════════════════════════════

class TestContextFilter:
    def test_copies_bound_ids(self):
        with log_context(task_id=2, document_id=5):
            record = _record()
        assert record.task_id == 2
        assert record.document_id == 5

    def test_explicit_extra_wins(self):
        with log_context(document_id=5):
            record = _record(document_id=11)
        assert record.document_id == 11

    def test_nothing_added_outside_context(self):
        record = _record()
        assert getattr(record, "task_id", None) is None
        assert getattr(record, "request_id", None) is None

    def test_request_and_user_ids_from_g(self, app):
        user = make_user(name="logger")
        with app.test_request_context("/api/v1/documents"):
            g.request_id = "req-123"
            g.current_user = user
            record = _record()
        assert record.request_id == "req-123"
        assert record.user_id == user.id

    def test_anonymous_request_has_no_user_id(self, app):
        with app.test_request_context("/api/v1/health"):
            g.request_id = "req-9"
            record = _record()
        assert record.request_id == "req-9"
        assert getattr(record, "user_id", None) is None


# ═══════════════════════════════════════════════════════════════════════════
#  Formatters
# ═══════════════════════════════════════════════════════════════════════════

class TestFormatters:
    def test_json_includes_context_and_event_fields(self):
        with log_context(task_id=4, document_id=8):
            record = _record("swept", event_type="expiration_sweep")
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "swept"
        assert entry["level"] == "INFO"
        assert entry["task_id"] == 4
        assert entry["document_id"] == 8
        assert entry["event_type"] == "expiration_sweep"
        assert "request_id" not in entry

    def test_json_includes_exception(self):
        try:
            raise KeyError("missing")
        except KeyError:
            record = logging.getLogger("doclife.test").makeRecord(
                "doclife.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        entry = json.loads(JSONFormatter().format(record))
        assert "KeyError" in entry["exception"]

    def test_readable_shows_short_context(self):
        with log_context(task_id=4, document_id=8):
            record = _record("swept")
        line = ReadableFormatter(color=False).format(record)
        assert "[task=4 doc=8]" in line
        assert line.endswith("doclife.test [task=4 doc=8]: swept")
        assert "\033[" not in line

    def test_readable_without_context_has_no_brackets(self):
        line = ReadableFormatter(color=False).format(_record("plain"))
        assert line.endswith("doclife.test: plain")


# ═══════════════════════════════════════════════════════════════════════════
#  Services bind their ids
# ═══════════════════════════════════════════════════════════════════════════

class TestServicesBindContext:
    def test_task_handler_runs_with_task_ids(self):
        task = ScheduledTask(task_type="backup", name="Backup", cron_expression="0 2 * * *",
                             enabled=True, next_run_at=NOW)
        db.session.add(task)
        db.session.commit()
        seen = {}

        def handler(now):
            seen.update(current_log_context())
            return TaskResult(success=True)

        with patch.dict(scheduler_service._job_registry, {"backup": handler}):
            SchedulerService.execute_task(task.id, now=NOW)

        assert seen == {"task_id": task.id, "task_type": "backup"}
        assert current_log_context() == {}

    def test_sweep_processes_each_document_with_its_id(self):
        author = make_user()
        first = make_document(author=author, expires_in=days(5))
        second = make_document(author=author, expires_in=days(5))
        seen = []

        original = ExpirationAlertService._process_document.__func__

        def spy(cls, document_id, now, config):
            seen.append(current_log_context().get("document_id"))
            return original(cls, document_id, now, config)

        with patch.object(ExpirationAlertService, "_process_document", classmethod(spy)):
            ExpirationAlertService.sweep(now=NOW)

        assert seen == [first.id, second.id]
