"""
Document Lifecycle Platform
Scheduling models.

Models:
    - ScheduledTask: persisted task registry (recurrence, state, run counters)
    - TaskExecution: one row per run, closed with outcome and duration
    - EmailLog: outbound email audit trail
    - BackupRecord: database snapshot history written by the backup task

ScheduledTask.status is the run-exclusion guard: it is moved to RUNNING
with a conditional UPDATE (see ``SchedulerService``), never by assigning
the attribute on a loaded instance.
"""

from datetime import datetime, timezone

from doclife.models import db
from doclife.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

TASK_SCHEDULED = "SCHEDULED"
TASK_RUNNING = "RUNNING"
TASK_COMPLETED = "COMPLETED"
TASK_FAILED = "FAILED"

TASK_STATUSES = {TASK_SCHEDULED, TASK_RUNNING, TASK_COMPLETED, TASK_FAILED}

EXECUTION_RUNNING = "running"
EXECUTION_COMPLETED = "completed"
EXECUTION_FAILED = "failed"

EXECUTION_STATUSES = {EXECUTION_RUNNING, EXECUTION_COMPLETED, EXECUTION_FAILED}
EMAIL_STATUSES = {"queued", "sent", "failed"}
BACKUP_STATUSES = {"in_progress", "completed", "failed"}


class ScheduledTask(db.Model):
    """
    Registry of recurring background tasks.

    ``task_type`` selects the handler registered with ``@register_job``;
    ``cron_expression`` drives ``next_run_at`` after every run.
    """

    __tablename__ = "scheduled_tasks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), default="")
    task_type = db.Column(db.String(50), unique=True, nullable=False,
                          comment="Handler key: expiration_check, backup, cleanup_logs, ...")
    cron_expression = db.Column(db.String(100), nullable=False, default="0 * * * *")
    status = db.Column(db.String(20), nullable=False, default=TASK_SCHEDULED,
                       comment="SCHEDULED | RUNNING | COMPLETED | FAILED")
    enabled = db.Column(db.Boolean, nullable=False, default=True)

    next_run_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    running_since = db.Column(db.DateTime(timezone=True), nullable=True)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_duration = db.Column(db.Float, nullable=True, comment="Seconds")
    last_result = db.Column(db.JSON, nullable=True, comment="TaskResult.to_dict() of the last run")
    run_count = db.Column(db.Integer, nullable=False, default=0)
    fail_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    executions = db.relationship(
        "TaskExecution", back_populates="task", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TaskExecution.started_at.desc()",
    )

    def record_run(self, *, succeeded, finished_at, duration, result=None, error=None):
        """Fold a finished run into the counters and release the RUNNING guard."""
        self.status = TASK_COMPLETED if succeeded else TASK_FAILED
        self.running_since = None
        self.last_run_at = finished_at
        self.last_duration = duration
        self.last_result = result
        self.run_count = (self.run_count or 0) + 1
        if succeeded:
            self.last_error = None
        else:
            self.fail_count = (self.fail_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self, recent_executions=0):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "task_type": self.task_type,
            "cron_expression": self.cron_expression,
            "status": self.status,
            "enabled": self.enabled,
            "next_run_at": isoformat(self.next_run_at),
            "running_since": isoformat(self.running_since),
            "last_run_at": isoformat(self.last_run_at),
            "last_duration": self.last_duration,
            "last_result": self.last_result,
            "run_count": self.run_count,
            "fail_count": self.fail_count,
            "last_error": self.last_error,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if recent_executions:
            d["executions"] = [e.to_dict() for e in self.executions.limit(recent_executions)]
        return d

    def __repr__(self):
        return f"<ScheduledTask {self.task_type} [{self.status}]>"


class TaskExecution(db.Model):
    __tablename__ = "task_executions"
    __table_args__ = (
        db.Index("idx_execution_task_started", "task_id", "started_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("scheduled_tasks.id", ondelete="CASCADE"), nullable=False,
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration = db.Column(db.Float, nullable=True, comment="Seconds")
    status = db.Column(db.String(20), nullable=False, default=EXECUTION_RUNNING,
                       comment="running | completed | failed")
    result = db.Column(db.JSON, nullable=True)
    error = db.Column(db.Text, nullable=True)

    task = db.relationship("ScheduledTask", back_populates="executions")

    def close(self, *, succeeded, completed_at, duration, result=None, error=None):
        self.status = EXECUTION_COMPLETED if succeeded else EXECUTION_FAILED
        self.completed_at = completed_at
        self.duration = duration
        self.result = result
        self.error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "duration": self.duration,
            "status": self.status,
            "result": self.result,
            "error": self.error,
        }

    def __repr__(self):
        return f"<TaskExecution {self.id}: task {self.task_id} [{self.status}]>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every email sent through the platform is logged here for audit/debug.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True,
                              comment="Email template used")
    category = db.Column(db.String(30), default="system",
                         comment="Notification category that triggered this email")
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)

    # Linkage
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id", ondelete="SET NULL"),
                            nullable=True, index=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc), index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "category": self.category,
            "status": self.status,
            "error_message": self.error_message,
            "document_id": self.document_id,
            "sent_at": isoformat(self.sent_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} → {self.recipient_email}>"


class BackupRecord(db.Model):
    """Database snapshot written by the ``backup`` task (or on demand)."""

    __tablename__ = "backup_records"

    id = db.Column(db.Integer, primary_key=True)
    filename = db.Column(db.String(255), nullable=True)
    filepath = db.Column(db.String(1000), nullable=True)
    file_size = db.Column(db.Integer, nullable=True, comment="Bytes")
    file_hash = db.Column(db.String(64), nullable=True, comment="sha256 hex digest")
    type = db.Column(db.String(20), nullable=False, default="full")
    status = db.Column(db.String(20), nullable=False, default="in_progress",
                       comment="in_progress | completed | failed")
    error = db.Column(db.Text, nullable=True)
    documents_count = db.Column(db.Integer, nullable=True)
    users_count = db.Column(db.Integer, nullable=True)
    is_automatic = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "filename": self.filename,
            "file_size": self.file_size,
            "file_hash": self.file_hash,
            "type": self.type,
            "status": self.status,
            "error": self.error,
            "documents_count": self.documents_count,
            "users_count": self.users_count,
            "is_automatic": self.is_automatic,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
        }

    def __repr__(self):
        return f"<BackupRecord {self.id}: {self.filename} [{self.status}]>"
