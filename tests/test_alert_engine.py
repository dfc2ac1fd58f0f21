"""
Tests: expiration alert engine.

Covers:
    1. compute_alert_level thresholds
    2. Sweep: alert creation, idempotence, monotonic levels
    3. Escalation of unacknowledged overdue alerts (resolver chain)
    4. Email failures do not block alerts
    5. Acknowledgement rules
    6. Expiring-documents report
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import NOW, days, make_document, make_user
from doclife.core.exceptions import ForbiddenError, NotFoundError
from doclife.models import db
from doclife.models.alerts import DocumentAlert, DocumentAlertNotification
from doclife.models.audit import AuditLog
from doclife.models.document import Document
from doclife.models.notification import Notification
from doclife.services.alert_engine import (
    AdminResolver,
    AlertConfig,
    DepartmentManagerResolver,
    ExpirationAlertService,
    alert_exists_for_level,
    compute_alert_level,
    resolve_escalation_target,
)
from doclife.services.permission import Principal

CONFIG = AlertConfig()


def _make_alert(document, *, level=1, status="sent", sent_at=None, escalated_at=None):
    alert = DocumentAlert(
        document_id=document.id,
        alert_days=30,
        alert_date=sent_at or NOW,
        level=level,
        status=status,
        sent_at=sent_at or NOW,
        escalated_at=escalated_at,
    )
    db.session.add(alert)
    db.session.commit()
    return alert


def _principal(user):
    return Principal.from_user(user)


# ═══════════════════════════════════════════════════════════════════════════
#  Levels
# ═══════════════════════════════════════════════════════════════════════════

class TestComputeAlertLevel:
    @pytest.mark.parametrize("remaining,level", [
        (45, 0), (31, 0), (30, 1), (16, 1), (15, 2), (8, 2),
        (7, 3), (2, 3), (1, 4), (0, 5), (-3, 5),
    ])
    def test_thresholds(self, remaining, level):
        assert compute_alert_level(remaining, CONFIG) == level

    def test_custom_thresholds(self):
        cfg = AlertConfig(first_alert_days=60, second_alert_days=30)
        assert compute_alert_level(45, cfg) == 1
        assert compute_alert_level(20, cfg) == 2


class TestAlertExistsForLevel:
    def test_higher_level_suppresses_lower(self):
        doc = make_document(expires_in=days(5))
        alerts = [_make_alert(doc, level=3)]
        assert alert_exists_for_level(alerts, 2) is True
        assert alert_exists_for_level(alerts, 4) is False

    def test_outstanding_alert_covers_expired_level(self):
        doc = make_document(expires_in=days(-1))
        assert alert_exists_for_level([_make_alert(doc, level=1)], 5) is True
        assert alert_exists_for_level([_make_alert(doc, level=1, status="acknowledged")], 5) is False


# ═══════════════════════════════════════════════════════════════════════════
#  Sweep
# ═══════════════════════════════════════════════════════════════════════════

class TestSweep:
    def test_document_five_days_out_gets_level_three_alert(self):
        author = make_user()
        doc = make_document(author=author, expires_in=days(5))

        summary = ExpirationAlertService.sweep(NOW)

        assert summary.processed == 1
        assert summary.alerts_created == 1
        alert = DocumentAlert.query.filter_by(document_id=doc.id).one()
        assert alert.level == 3
        assert alert.status == "sent"
        notes = Notification.query.filter_by(user_id=author.id).all()
        assert len(notes) == 1
        assert notes[0].alert_level == 3
        assert notes[0].days_until_expiration == 5
        delivery = DocumentAlertNotification.query.filter_by(alert_id=alert.id).one()
        assert delivery.email_sent is True

    def test_second_sweep_creates_nothing(self):
        make_document(expires_in=days(5))
        ExpirationAlertService.sweep(NOW)
        summary = ExpirationAlertService.sweep(NOW + timedelta(hours=1))
        assert summary.alerts_created == 0
        assert DocumentAlert.query.count() == 1
        assert Notification.query.count() == 1

    def test_crossing_a_threshold_raises_next_level(self):
        make_document(expires_in=days(10))
        ExpirationAlertService.sweep(NOW)
        ExpirationAlertService.sweep(NOW + days(4))
        levels = sorted(a.level for a in DocumentAlert.query.all())
        assert levels == [2, 3]

    def test_far_future_and_inactive_documents_are_ignored(self):
        make_document(expires_in=days(90))
        make_document(expires_in=days(3), status="ARCHIVED")
        make_document(expires_in=None)
        summary = ExpirationAlertService.sweep(NOW)
        assert summary.alerts_created == 0
        assert DocumentAlert.query.count() == 0

    def test_expired_document_is_marked_expired(self):
        doc = make_document(expires_in=-timedelta(hours=2))
        summary = ExpirationAlertService.sweep(NOW)
        assert summary.expired_marked == 1
        assert db.session.get(Document, doc.id).status == "EXPIRED"
        assert DocumentAlert.query.filter_by(document_id=doc.id).one().level == 5

    def test_expiry_is_audited(self):
        doc = make_document(expires_in=-timedelta(hours=2), status="APPROVED")
        ExpirationAlertService.sweep(NOW)
        entry = AuditLog.query.filter_by(action="document.expire").one()
        assert entry.document_id == doc.id
        assert entry.actor_user_id is None
        assert entry.diff == {"status": {"old": "APPROVED", "new": "EXPIRED"}}

    def test_overdue_document_swept_twice_at_same_instant(self):
        author = make_user()
        doc = make_document(author=author, expires_in=days(-2))

        first = ExpirationAlertService.sweep(NOW)
        second = ExpirationAlertService.sweep(NOW)

        assert (first.alerts_created, first.expired_marked) == (1, 1)
        assert (second.alerts_created, second.escalations, second.expired_marked) == (0, 0, 0)
        assert DocumentAlert.query.filter_by(document_id=doc.id).one().level == 5
        assert Notification.query.filter_by(user_id=author.id).count() == 1
        assert AuditLog.query.filter_by(action="document.expire").count() == 1

    def test_failure_on_one_document_does_not_stop_the_sweep(self):
        first = make_document(expires_in=days(5))
        second = make_document(expires_in=days(5))
        original = ExpirationAlertService._process_document.__func__

        def flaky(cls, document_id, now, config):
            if document_id == first.id:
                raise RuntimeError("boom")
            return original(cls, document_id, now, config)

        with patch.object(ExpirationAlertService, "_process_document", classmethod(flaky)):
            summary = ExpirationAlertService.sweep(NOW)

        assert summary.alerts_created == 1
        assert len(summary.errors) == 1
        assert DocumentAlert.query.filter_by(document_id=second.id).count() == 1

    def test_email_failure_keeps_alert_and_notification(self):
        make_document(expires_in=days(5))
        with patch(
            "doclife.services.alert_engine.EmailService.send_from_template",
            side_effect=RuntimeError("smtp down"),
        ):
            summary = ExpirationAlertService.sweep(NOW)

        assert summary.alerts_created == 1
        assert summary.errors == []
        assert Notification.query.count() == 1
        assert DocumentAlertNotification.query.one().email_sent is False

    def test_email_disabled(self):
        make_document(expires_in=days(5))
        with patch("doclife.services.alert_engine.EmailService.send_from_template") as send:
            ExpirationAlertService.sweep(NOW, AlertConfig(email_enabled=False))
        send.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════
#  Escalation
# ═══════════════════════════════════════════════════════════════════════════

class TestEscalation:
    def _overdue_setup(self):
        author = make_user(department="Quality")
        manager = make_user(role="MANAGER", department="Quality")
        doc = make_document(author=author, expires_in=days(-2), department="Quality")
        alert = _make_alert(doc, level=1, sent_at=NOW - days(4))
        return author, manager, doc, alert

    def test_unacknowledged_overdue_alert_escalates_to_department_manager(self):
        _author, manager, _doc, alert = self._overdue_setup()

        summary = ExpirationAlertService.sweep(NOW)

        assert summary.escalations == 1
        alert = db.session.get(DocumentAlert, alert.id)
        assert alert.level == 2
        assert alert.status == "escalated"
        assert alert.escalated_to == manager.id
        note = Notification.query.filter_by(user_id=manager.id).one()
        assert note.category == "escalation"
        assert note.alert_level == 2
        assert AuditLog.query.filter_by(action="alert.escalate").count() == 1
        assert DocumentAlert.query.count() == 1

    def test_repeated_sweep_at_same_instant_escalates_once(self):
        _author, manager, _doc, alert = self._overdue_setup()

        ExpirationAlertService.sweep(NOW)
        summary = ExpirationAlertService.sweep(NOW)

        assert summary.escalations == 0
        assert db.session.get(DocumentAlert, alert.id).level == 2
        assert Notification.query.filter_by(user_id=manager.id).count() == 1
        assert AuditLog.query.filter_by(action="alert.escalate").count() == 1

    def test_escalation_waits_for_escalation_days(self):
        _author, _manager, _doc, alert = self._overdue_setup()
        alert.sent_at = NOW - days(1)
        db.session.commit()
        assert ExpirationAlertService.sweep(NOW).escalations == 0

    def test_second_escalation_goes_to_admin(self):
        _author, _manager, _doc, alert = self._overdue_setup()
        admin = make_user(role="ADMIN")
        ExpirationAlertService.sweep(NOW)
        ExpirationAlertService.sweep(NOW + days(3))
        alert = db.session.get(DocumentAlert, alert.id)
        assert alert.level == 3
        assert alert.escalated_to == admin.id

    def test_stops_at_max_level(self):
        _author, _manager, _doc, alert = self._overdue_setup()
        make_user(role="ADMIN")
        for offset in (0, 3, 6, 9):
            ExpirationAlertService.sweep(NOW + days(offset))
        assert db.session.get(DocumentAlert, alert.id).level == CONFIG.max_escalation_level

    def test_acknowledged_alert_never_escalates(self):
        _author, _manager, _doc, alert = self._overdue_setup()
        alert.status = "acknowledged"
        db.session.commit()
        summary = ExpirationAlertService.sweep(NOW)
        assert summary.escalations == 0

    def test_no_target_means_no_escalation(self):
        author = make_user()
        doc = make_document(author=author, expires_in=days(-2))
        _make_alert(doc, level=1, sent_at=NOW - days(4))
        assert ExpirationAlertService.sweep(NOW).escalations == 0

    def test_escalation_disabled(self):
        self._overdue_setup()
        summary = ExpirationAlertService.sweep(NOW, AlertConfig(escalation_enabled=False))
        assert summary.escalations == 0


class TestResolverChain:
    def test_manager_resolver_uses_owning_department(self):
        author = make_user(department="Legal")
        manager = make_user(role="MANAGER", department="Legal")
        make_user(role="MANAGER", department="Quality")
        doc = make_document(author=author)
        alert = _make_alert(doc)
        assert DepartmentManagerResolver().resolve(doc, alert).id == manager.id

    def test_chain_falls_through_to_admin(self):
        admin = make_user(role="ADMIN")
        doc = make_document()
        alert = _make_alert(doc)
        assert resolve_escalation_target(doc, alert).id == admin.id

    def test_custom_chain(self):
        admin = make_user(role="ADMIN")
        make_user(role="MANAGER", department="Ops")
        doc = make_document(department="Ops")
        alert = _make_alert(doc)
        assert resolve_escalation_target(doc, alert, chain=(AdminResolver(),)).id == admin.id


# ═══════════════════════════════════════════════════════════════════════════
#  Acknowledge / create_initial_alert
# ═══════════════════════════════════════════════════════════════════════════

class TestAcknowledge:
    def test_author_acknowledges(self):
        author = make_user()
        doc = make_document(author=author, expires_in=days(5))
        alert = _make_alert(doc)
        result = ExpirationAlertService.acknowledge(alert.id, _principal(author), NOW)
        assert result.status == "acknowledged"
        assert result.acknowledged_by == author.id
        assert AuditLog.query.filter_by(action="alert.acknowledge").count() == 1

    def test_idempotent(self):
        author = make_user()
        alert = _make_alert(make_document(author=author))
        ExpirationAlertService.acknowledge(alert.id, _principal(author), NOW)
        ExpirationAlertService.acknowledge(alert.id, _principal(author), NOW + days(1))
        assert AuditLog.query.filter_by(action="alert.acknowledge").count() == 1

    def test_department_manager_may_acknowledge(self):
        author = make_user(department="Quality")
        manager = make_user(role="MANAGER", department="Quality")
        alert = _make_alert(make_document(author=author))
        assert ExpirationAlertService.acknowledge(alert.id, _principal(manager)).status == "acknowledged"

    def test_unrelated_user_forbidden(self):
        alert = _make_alert(make_document())
        with pytest.raises(ForbiddenError):
            ExpirationAlertService.acknowledge(alert.id, _principal(make_user()))

    def test_missing_alert(self):
        with pytest.raises(NotFoundError):
            ExpirationAlertService.acknowledge(404, _principal(make_user()))


class TestCreateInitialAlert:
    def test_creates_alert_for_current_level(self):
        doc = make_document(expires_in=days(20))
        alert = ExpirationAlertService.create_initial_alert(doc.id, NOW)
        assert alert.level == 1

    def test_nothing_outside_thresholds(self):
        doc = make_document(expires_in=days(200))
        assert ExpirationAlertService.create_initial_alert(doc.id, NOW) is None


# ═══════════════════════════════════════════════════════════════════════════
#  Expiring report
# ═══════════════════════════════════════════════════════════════════════════

class TestListExpiring:
    def test_buckets_and_summary(self):
        admin = make_user(role="ADMIN")
        make_document(expires_in=days(-3))
        make_document(expires_in=days(5))
        make_document(expires_in=days(20))
        make_document(expires_in=days(60))

        report = ExpirationAlertService.list_expiring(_principal(admin), days=30, now=NOW)

        assert report["summary"]["total_expired"] == 1
        assert report["summary"]["total_expiring"] == 1
        assert report["summary"]["total_upcoming"] == 1
        assert report["expiring"][0]["days_until_expiration"] == 5

    def test_exclude_expired(self):
        admin = make_user(role="ADMIN")
        make_document(expires_in=days(-3))
        report = ExpirationAlertService.list_expiring(_principal(admin), include_expired=False, now=NOW)
        assert report["expired"] == []

    def test_non_admin_sees_own_and_department_documents(self):
        me = make_user(department="Quality")
        colleague = make_user(department="Quality")
        make_document(author=me, expires_in=days(5))
        make_document(author=colleague, expires_in=days(5), department="Quality")
        make_document(expires_in=days(5), department="Finance")
        report = ExpirationAlertService.list_expiring(_principal(me), now=NOW)
        assert report["summary"]["total_expiring"] == 2

    def test_acknowledged_alerts_hidden_by_default(self):
        admin = make_user(role="ADMIN")
        doc = make_document(expires_in=days(5))
        _make_alert(doc, level=3, status="acknowledged")
        report = ExpirationAlertService.list_expiring(_principal(admin), now=NOW)
        assert report["expiring"][0]["alerts"] == []
        assert report["summary"]["acknowledged_alerts"] == 1
        report = ExpirationAlertService.list_expiring(_principal(admin), include_acknowledged=True, now=NOW)
        assert len(report["expiring"][0]["alerts"]) == 1
