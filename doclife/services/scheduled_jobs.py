"""
Document Lifecycle Platform
Scheduled Jobs.

Concrete handlers for the scheduled task types. Each receives the run's
``now`` and returns a ``TaskResult``; the scheduler records it.

Jobs:
    - expiration_check: expiration alert sweep and escalation
    - notification_send: kept for existing task rows; the sweep sends notifications
    - backup: database snapshot, then prune to BACKUP_KEEP
    - cleanup_logs: purge old email logs, task executions and read notifications
    - cleanup_locks: delete expired document locks
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete

from doclife.models import db
from doclife.models.notification import Notification
from doclife.models.scheduling import EmailLog, TaskExecution
from doclife.services.scheduler_service import TaskResult, register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Expiration Check
# ═══════════════════════════════════════════════════════════════════════════

@register_job("expiration_check")
def run_expiration_check(now: datetime) -> TaskResult:
    """Raise expiration alerts and escalate overdue ones."""
    from doclife.services.alert_engine import ExpirationAlertService

    summary = ExpirationAlertService.sweep(now)
    message = (
        f"Processed {summary.processed} documents, {summary.alerts_created} alerts sent, "
        f"{summary.escalations} escalations"
    )
    if summary.errors:
        message += f", {len(summary.errors)} documents failed"
    logger.info("Expiration check: %s", summary.to_dict())
    return TaskResult(success=True, message=message, data=summary.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Notification Send
# ═══════════════════════════════════════════════════════════════════════════

@register_job("notification_send")
def run_notification_send(now: datetime) -> TaskResult:
    return TaskResult(success=True, message="Notifications are sent by the expiration check")


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Backup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("backup")
def run_backup(now: datetime) -> TaskResult:
    """Snapshot the database and prune old snapshots."""
    from doclife.services.backup_service import BackupService

    record = BackupService.create_backup(backup_type="full", is_automatic=True, now=now)
    if record.status != "completed":
        return TaskResult(success=False, message="Backup failed", data=record.to_dict(), error=record.error)

    removed = BackupService.cleanup_old_backups()
    return TaskResult(
        success=True,
        message=f"Backup {record.filename} created",
        data={"backup": record.to_dict(), "removed_backups": removed},
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Log Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("cleanup_logs")
def run_cleanup_logs(now: datetime) -> TaskResult:
    """Delete old email logs, task executions and read notifications."""
    cfg = current_app.config
    email_cutoff = now - timedelta(days=cfg.get("EMAIL_LOG_RETENTION_DAYS", 30))
    execution_cutoff = now - timedelta(days=cfg.get("TASK_EXECUTION_RETENTION_DAYS", 90))
    notification_cutoff = now - timedelta(days=cfg.get("READ_NOTIFICATION_RETENTION_DAYS", 30))

    results = {
        "email_logs_deleted": db.session.execute(
            delete(EmailLog).where(EmailLog.created_at < email_cutoff)
            .execution_options(synchronize_session="fetch")
        ).rowcount,
        "executions_deleted": db.session.execute(
            delete(TaskExecution).where(TaskExecution.started_at < execution_cutoff)
            .execution_options(synchronize_session="fetch")
        ).rowcount,
        "notifications_deleted": db.session.execute(
            delete(Notification).where(
                Notification.is_read.is_(True),
                Notification.created_at < notification_cutoff,
            )
            .execution_options(synchronize_session="fetch")
        ).rowcount,
    }
    db.session.commit()
    logger.info("Log cleanup: %s", results)
    total = sum(results.values())
    return TaskResult(success=True, message=f"Removed {total} old records", data=results)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 5: Lock Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("cleanup_locks")
def run_cleanup_locks(now: datetime) -> TaskResult:
    """Delete document locks whose lease has run out."""
    from doclife.services.lock_service import DocumentLockService

    removed = DocumentLockService.cleanup_expired(now)
    return TaskResult(success=True, message=f"Removed {removed} expired locks", data={"locks_removed": removed})
