"""
Document Lifecycle Platform
Scheduler Service.

Runs persisted recurring tasks. There is no in-process timer: an external
trigger (cron hitting ``POST /api/v1/tasks`` or ``flask run-due-tasks``)
calls ``process_due_tasks`` and every enabled task whose ``next_run_at``
has passed is executed once.

Architecture:
    - Handlers are registered per task type with ``@register_job``
      and return a ``TaskResult``
    - ScheduledTask rows hold recurrence, counters and the RUNNING guard
    - Each run is recorded as a TaskExecution row
    - The RUNNING transition is a conditional UPDATE, so two triggers racing
      for the same task cannot both run it
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from doclife.core.exceptions import (
    ConflictError,
    NotFoundError,
    TaskAlreadyRunningError,
    TaskDisabledError,
    ValidationError,
)
from doclife.middleware.logging_config import log_context
from doclife.models import db
from doclife.models.audit import write_audit
from doclife.models.scheduling import (
    TASK_RUNNING,
    TASK_SCHEDULED,
    ScheduledTask,
    TaskExecution,
)
from doclife.services.recurrence import interval_for, is_supported, next_run
from doclife.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Task results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class TaskResult:
    """Outcome reported by a task handler. ``success=False`` counts as a failed run."""

    success: bool
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

TaskHandler = Callable[[datetime], TaskResult]

_job_registry: dict[str, TaskHandler] = {}


def register_job(task_type: str):
    """Decorator to register the handler for a task type.

    Usage:
        @register_job("expiration_check")
        def run_expiration_check(now):
            ...
            return TaskResult(success=True, message="...")
    """
    def decorator(fn: TaskHandler) -> TaskHandler:
        _job_registry[task_type] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, TaskHandler]:
    """Return all registered handlers."""
    return dict(_job_registry)


DEFAULT_TASKS = (
    {
        "task_type": "expiration_check",
        "name": "Expiration check",
        "description": "Raises expiration alerts and escalates unacknowledged ones",
        "cron_expression": "0 * * * *",
    },
    {
        "task_type": "backup",
        "name": "Database backup",
        "description": "Daily database snapshot at 02:00",
        "cron_expression": "0 2 * * *",
    },
    {
        "task_type": "cleanup_logs",
        "name": "Log cleanup",
        "description": "Weekly purge of old email logs, executions and read notifications",
        "cron_expression": "0 3 * * 0",
    },
    {
        "task_type": "cleanup_locks",
        "name": "Expired lock cleanup",
        "description": "Removes document locks whose lease has run out",
        "cron_expression": "0 */6 * * *",
    },
)


class SchedulerService:
    """
    Persisted task scheduler.

    All methods run inside an application context and accept an explicit
    ``now`` so callers (and tests) control the clock.
    """

    @staticmethod
    def initialize_default_tasks(now: datetime | None = None) -> list[ScheduledTask]:
        """
        Seed the default task set. Task types already present are left alone,
        so calling this repeatedly is harmless.
        """
        now = now or utcnow()
        existing = set(db.session.execute(select(ScheduledTask.task_type)).scalars())

        created = []
        for defaults in DEFAULT_TASKS:
            if defaults["task_type"] in existing:
                continue
            task = ScheduledTask(
                **defaults,
                status=TASK_SCHEDULED,
                enabled=True,
                next_run_at=next_run(defaults["cron_expression"], now),
            )
            db.session.add(task)
            created.append(task)

        if not created:
            return []
        try:
            db.session.commit()
        except IntegrityError:
            # Another process seeded the same task types first
            db.session.rollback()
            logger.info("Default tasks were seeded concurrently; nothing created")
            return []
        logger.info("Created %d default scheduled tasks", len(created))
        return created

    @staticmethod
    def list_tasks(recent_executions: int = 5) -> list[dict]:
        tasks = db.session.execute(
            select(ScheduledTask).order_by(ScheduledTask.next_run_at, ScheduledTask.id)
        ).scalars()
        return [t.to_dict(recent_executions=recent_executions) for t in tasks]

    @staticmethod
    def toggle_task(
        task_id: int,
        enabled: bool,
        cron_expression: str | None = None,
        now: datetime | None = None,
        actor_user_id: int | None = None,
    ) -> dict:
        """Enable/disable a task and optionally change its recurrence.

        Raises:
            NotFoundError: unknown task id.
            ValidationError: *cron_expression* is not a valid five-field cron expression.
        """
        task = db.session.get(ScheduledTask, task_id)
        if task is None:
            raise NotFoundError("ScheduledTask", task_id)
        if cron_expression and not is_supported(cron_expression.strip()):
            raise ValidationError(
                f"Invalid cron expression: {cron_expression}",
                details={"cronExpression": cron_expression},
            )
        now = now or utcnow()

        before = {"enabled": task.enabled, "cron_expression": task.cron_expression}
        task.enabled = bool(enabled)
        if cron_expression:
            task.cron_expression = cron_expression.strip()
            task.next_run_at = next_run(task.cron_expression, now)
        elif task.enabled and task.next_run_at is None:
            task.next_run_at = next_run(task.cron_expression, now)

        after = {"enabled": task.enabled, "cron_expression": task.cron_expression}
        write_audit(
            entity_type="scheduled_task",
            entity_id=task.id,
            action="task.toggle",
            actor_user_id=actor_user_id,
            diff={k: {"old": before[k], "new": after[k]} for k in before if before[k] != after[k]},
        )
        db.session.commit()
        logger.info(
            "Task %s %s (cron=%s)", task.task_type,
            "enabled" if task.enabled else "disabled", task.cron_expression,
            extra={"task_id": task.id, "task_type": task.task_type},
        )
        return task.to_dict()

    # ── Execution ────────────────────────────────────────────────────────

    @staticmethod
    def _claim(task_id: int, now: datetime) -> bool:
        """Move an enabled, non-running task to RUNNING. False if someone else holds it."""
        result = db.session.execute(
            update(ScheduledTask)
            .where(
                ScheduledTask.id == task_id,
                ScheduledTask.enabled.is_(True),
                ScheduledTask.status != TASK_RUNNING,
            )
            .values(status=TASK_RUNNING, running_since=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    @classmethod
    def execute_task(cls, task_id: int, now: datetime | None = None) -> dict:
        """
        Run one task now, regardless of ``next_run_at``.

        Raises:
            NotFoundError: unknown task id.
            TaskDisabledError: the task is disabled.
            TaskAlreadyRunningError: a run is already in flight.

        Handler failures never propagate: they are recorded on the task and
        the execution row, and reported in the returned dict.
        """
        task = db.session.get(ScheduledTask, task_id)
        if task is None:
            raise NotFoundError("ScheduledTask", task_id)
        if not task.enabled:
            raise TaskDisabledError(task_id)
        if task.status == TASK_RUNNING:
            raise TaskAlreadyRunningError(task_id)

        started_at = as_utc(now) if now else utcnow()
        task_type = task.task_type
        if not cls._claim(task_id, started_at):
            db.session.refresh(task)
            if not task.enabled:
                raise TaskDisabledError(task_id)
            raise TaskAlreadyRunningError(task_id)

        execution = TaskExecution(task_id=task_id, started_at=started_at)
        db.session.add(execution)
        db.session.commit()
        execution_id = execution.id

        with log_context(task_id=task_id, task_type=task_type):
            logger.info("Task %s started", task_type)

            clock = time.monotonic()
            result: TaskResult | None = None
            error: str | None = None
            try:
                handler = _job_registry.get(task_type)
                if handler is None:
                    raise LookupError(f"No handler registered for task type '{task_type}'")
                result = handler(started_at)
                if not result.success:
                    error = result.error or result.message or "Task reported failure"
            except Exception as exc:
                db.session.rollback()
                error = str(exc) or exc.__class__.__name__
                logger.exception("Task %s failed", task_type)
            finally:
                duration = round(time.monotonic() - clock, 3)
                if result is None and error is None:
                    error = "Task run was interrupted"
                cls._finish(task_id, execution_id, started_at, duration, result, error)

        succeeded = error is None
        return {
            "task_id": task_id,
            "task_type": task_type,
            "execution_id": execution_id,
            "success": succeeded,
            "message": result.message if result else "",
            "data": result.data if result else {},
            "error": error,
            "duration": duration,
        }

    @classmethod
    def execute_manually(
        cls,
        task_id: int,
        actor_user_id: int | None = None,
        now: datetime | None = None,
    ) -> dict:
        """``execute_task`` on operator request, with an audit row for the run.

        ``actor_user_id`` is None when the shared cron secret triggered it.
        """
        outcome = cls.execute_task(task_id, now)
        write_audit(
            entity_type="scheduled_task",
            entity_id=task_id,
            action="task.execute",
            actor_user_id=actor_user_id,
            diff={
                "trigger": "user" if actor_user_id else "cron",
                "execution_id": outcome["execution_id"],
                "success": outcome["success"],
                "error": outcome["error"],
            },
        )
        db.session.commit()
        return outcome

    @staticmethod
    def _finish(task_id, execution_id, started_at, duration, result, error) -> None:
        """Close the execution, fold the run into the task and reschedule it."""
        succeeded = error is None
        finished_at = started_at + timedelta(seconds=duration)
        payload = result.to_dict() if result else None
        try:
            task = db.session.get(ScheduledTask, task_id, populate_existing=True)
            execution = db.session.get(TaskExecution, execution_id)
            if execution is not None:
                execution.close(
                    succeeded=succeeded, completed_at=finished_at, duration=duration,
                    result=payload, error=error,
                )
            task.record_run(
                succeeded=succeeded, finished_at=finished_at, duration=duration,
                result=payload, error=error,
            )
            task.next_run_at = next_run(task.cron_expression, finished_at)
            db.session.commit()
        except SQLAlchemyError:
            # The task stays RUNNING and will be reported by find_stale_tasks
            db.session.rollback()
            logger.exception("Failed to record run of task %s", task_id, extra={"task_id": task_id})
            return

        log = logger.info if succeeded else logger.warning
        log(
            "Task %s %s in %.3fs (next run %s)",
            task.task_type, "completed" if succeeded else "failed", duration,
            task.next_run_at.isoformat(),
            extra={"task_id": task_id, "task_type": task.task_type},
        )

    @classmethod
    def process_due_tasks(cls, now: datetime | None = None) -> dict:
        """
        Execute every enabled, idle task whose ``next_run_at`` has passed.

        Tasks are run one after another; a task another trigger already
        claimed is reported as skipped.
        """
        now = as_utc(now) if now else utcnow()
        stale = cls.find_stale_tasks(now)
        for entry in stale:
            logger.warning(
                "Task %s has been RUNNING since %s", entry["task_type"], entry["running_since"],
                extra={"task_id": entry["task_id"], "task_type": entry["task_type"]},
            )

        due = db.session.execute(
            select(ScheduledTask.id, ScheduledTask.name)
            .where(
                ScheduledTask.enabled.is_(True),
                ScheduledTask.status != TASK_RUNNING,
                ScheduledTask.next_run_at.is_not(None),
                ScheduledTask.next_run_at <= now,
            )
            .order_by(ScheduledTask.next_run_at, ScheduledTask.id)
        ).all()

        results = []
        for task_id, name in due:
            try:
                outcome = cls.execute_task(task_id, now)
            except (NotFoundError, ConflictError) as exc:
                db.session.rollback()
                outcome = {"task_id": task_id, "success": False, "skipped": True, "error": str(exc)}
            results.append({"task_name": name, **outcome})

        logger.info("Processed %d due tasks", len(results))
        return {"processed": len(results), "results": results, "stale": stale}

    @staticmethod
    def find_stale_tasks(now: datetime | None = None) -> list[dict]:
        """RUNNING tasks whose run has lasted longer than their recurrence interval."""
        now = as_utc(now) if now else utcnow()
        running = db.session.execute(
            select(ScheduledTask).where(ScheduledTask.status == TASK_RUNNING)
        ).scalars()

        stale = []
        for task in running:
            since = as_utc(task.running_since)
            if since is None or now - since > interval_for(task.cron_expression, since):
                stale.append({
                    "task_id": task.id,
                    "task_type": task.task_type,
                    "running_since": since.isoformat() if since else None,
                })
        return stale
