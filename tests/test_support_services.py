"""
Tests: supporting services (email, backup, notifications, log cleanup).
"""

import os
import smtplib
from datetime import timedelta
from unittest.mock import patch

from flask import current_app

from conftest import NOW, make_document, make_user
from doclife.models import db
from doclife.models.notification import Notification
from doclife.models.scheduling import BackupRecord, EmailLog, ScheduledTask, TaskExecution
from doclife.services.backup_service import BackupService
from doclife.services.email_service import EmailService
from doclife.services.notification import NotificationService


# ═══════════════════════════════════════════════════════════════════════════
#  EmailService
# ═══════════════════════════════════════════════════════════════════════════

class TestEmailService:
    def test_dev_mode_logs_as_sent(self):
        log = EmailService.send(to_email="a@example.com", subject="Hi", html_body="<p>x</p>")
        assert log.status == "sent"
        assert EmailLog.query.count() == 1

    def test_template_subject(self):
        log = EmailService.send_from_template(
            to_email="a@example.com",
            template_name="expiration_alert",
            context={"headline": "Document expires in 5 day(s)", "document_title": "Manual"},
        )
        assert log.status == "sent"
        assert log.subject == "[DocLife] Document expires in 5 day(s): Manual"

    def test_unknown_template(self):
        assert EmailService.send_from_template(to_email="a@example.com", template_name="nope", context={}) is None

    def test_smtp_failure_is_recorded(self):
        with patch.dict(current_app.config, {"MAIL_SERVER": "smtp.example.com"}), \
                patch("doclife.services.email_service.smtplib.SMTP",
                      side_effect=smtplib.SMTPConnectError(421, "unavailable")):
            log = EmailService.send(to_email="a@example.com", subject="Hi", html_body="x")
        assert log.status == "failed"
        assert "unavailable" in log.error_message


# ═══════════════════════════════════════════════════════════════════════════
#  BackupService
# ═══════════════════════════════════════════════════════════════════════════

class TestBackupService:
    def test_memory_database_records_failed_backup(self):
        record = BackupService.create_backup(now=NOW)
        assert record.status == "failed"
        assert "SQLite" in record.error

    def test_file_copy_and_retention(self, tmp_path):
        source = tmp_path / "live.db"
        source.write_bytes(b"SQLite format 3\x00" + b"\x00" * 64)
        make_document()

        with patch.object(BackupService, "_database_file", return_value=str(source)), \
                patch.dict(current_app.config, {"BACKUP_DIR": str(tmp_path / "backups")}):
            first = BackupService.create_backup(now=NOW)
            second = BackupService.create_backup(now=NOW + timedelta(days=1))
            first_status, first_path = first.status, first.filepath
            removed = BackupService.cleanup_old_backups(keep=1)

        assert first_status == "completed"
        assert len(second.file_hash) == 64
        assert second.documents_count == 1
        assert removed == 1
        assert BackupRecord.query.filter_by(status="completed").count() == 1
        assert not os.path.exists(first_path)
        assert os.path.exists(second.filepath)


# ═══════════════════════════════════════════════════════════════════════════
#  NotificationService
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationService:
    def test_create_list_and_counts(self):
        user = make_user()
        NotificationService.create(user_id=user.id, title="One")
        NotificationService.create(user_id=user.id, title="Two", category="workflow")
        items, total = NotificationService.list_for_user(user.id)
        assert total == 2
        assert items[0].title == "Two"
        assert NotificationService.unread_count(user.id) == 2

    def test_mark_all_read_only_touches_own(self):
        me = make_user()
        other = make_user()
        NotificationService.create(user_id=me.id, title="Mine")
        NotificationService.create(user_id=other.id, title="Theirs")
        assert NotificationService.mark_all_read(me.id) == 1
        assert NotificationService.unread_count(other.id) == 1


# ═══════════════════════════════════════════════════════════════════════════
#  cleanup_logs job
# ═══════════════════════════════════════════════════════════════════════════

class TestCleanupLogs:
    def test_purges_by_retention(self):
        from doclife.services.scheduled_jobs import run_cleanup_logs

        user = make_user()
        db.session.add_all([
            EmailLog(recipient_email="a@example.com", subject="old", created_at=NOW - timedelta(days=40)),
            EmailLog(recipient_email="a@example.com", subject="new", created_at=NOW - timedelta(days=5)),
            Notification(user_id=user.id, title="old read", is_read=True, created_at=NOW - timedelta(days=40)),
            Notification(user_id=user.id, title="old unread", created_at=NOW - timedelta(days=40)),
        ])
        task = ScheduledTask(name="x", task_type="cleanup_logs", cron_expression="0 3 * * 0")
        db.session.add(task)
        db.session.flush()
        db.session.add(TaskExecution(task_id=task.id, started_at=NOW - timedelta(days=100)))
        db.session.commit()

        result = run_cleanup_logs(NOW)

        assert result.success is True
        assert result.data == {"email_logs_deleted": 1, "executions_deleted": 1, "notifications_deleted": 1}
        assert Notification.query.one().title == "old unread"
