"""
Document Lifecycle Platform
Expiration Alert & Escalation Engine.

Each sweep looks at every live document with an expiration date, works out
its alert level from the days remaining and raises at most one alert per
level. Alerts on overdue documents that nobody acknowledges are escalated
one level at a time: first to a manager of the owning department, then to
an administrator.

Alert levels (thresholds come from ``AlertConfig``):
    5  expired (d <= 0)
    4  d <= final      3  d <= third
    2  d <= second     1  d <= first
    0  no alert

Usage:
    from doclife.services.alert_engine import ExpirationAlertService
    summary = ExpirationAlertService.sweep()
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from flask import current_app
from sqlalchemy import func, or_, select, update

from doclife.core.exceptions import ForbiddenError, NotFoundError
from doclife.middleware.logging_config import log_context
from doclife.models import db
from doclife.models.alerts import (
    ALERT_ACKNOWLEDGED,
    ALERT_ESCALATED,
    ALERT_LEVEL_EXPIRED,
    ALERT_SENT,
    AlertConfiguration,
    DocumentAlert,
    DocumentAlertNotification,
)
from doclife.models.audit import write_audit
from doclife.models.auth import ROLE_ADMIN, ROLE_MANAGER, User
from doclife.models.document import (
    EXPIRABLE_DOCUMENT_STATUSES,
    INACTIVE_DOCUMENT_STATUSES,
    Document,
)
from doclife.services.email_service import LEVEL_COLORS, EmailService
from doclife.services.notification import NotificationService
from doclife.services.permission import Principal, can_acknowledge_alert
from doclife.utils.helpers import as_utc, days_until, utcnow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Configuration
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlertConfig:
    first_alert_days: int = 30
    second_alert_days: int = 15
    third_alert_days: int = 7
    final_alert_days: int = 1
    escalation_enabled: bool = True
    escalation_days: int = 3
    max_escalation_level: int = 3
    email_enabled: bool = True


def get_alert_config() -> AlertConfig:
    """The stored AlertConfiguration row, or the app-config defaults."""
    row = db.session.execute(
        select(AlertConfiguration).order_by(AlertConfiguration.id).limit(1)
    ).scalar_one_or_none()
    if row is not None:
        return AlertConfig(
            first_alert_days=row.first_alert_days,
            second_alert_days=row.second_alert_days,
            third_alert_days=row.third_alert_days,
            final_alert_days=row.final_alert_days,
            escalation_enabled=row.escalation_enabled,
            escalation_days=row.escalation_days,
            max_escalation_level=row.max_escalation_level,
            email_enabled=row.email_enabled,
        )
    cfg = current_app.config
    return AlertConfig(
        first_alert_days=cfg.get("ALERT_FIRST_DAYS", 30),
        second_alert_days=cfg.get("ALERT_SECOND_DAYS", 15),
        third_alert_days=cfg.get("ALERT_THIRD_DAYS", 7),
        final_alert_days=cfg.get("ALERT_FINAL_DAYS", 1),
        escalation_enabled=cfg.get("ALERT_ESCALATION_ENABLED", True),
        escalation_days=cfg.get("ALERT_ESCALATION_DAYS", 3),
        max_escalation_level=cfg.get("ALERT_MAX_ESCALATION_LEVEL", 3),
        email_enabled=cfg.get("ALERT_EMAIL_ENABLED", True),
    )


def compute_alert_level(days: int, config: AlertConfig) -> int:
    if days <= 0:
        return ALERT_LEVEL_EXPIRED
    if days <= config.final_alert_days:
        return 4
    if days <= config.third_alert_days:
        return 3
    if days <= config.second_alert_days:
        return 2
    if days <= config.first_alert_days:
        return 1
    return 0


def alert_exists_for_level(alerts, level: int) -> bool:
    """True when *alerts* already cover *level*.

    Levels never go down: an alert at or above *level* suppresses a new one.
    For expired documents any outstanding alert also counts, so the sweep
    escalates it instead of raising a fresh level-5 alert.
    """
    if any(a.level >= level for a in alerts):
        return True
    if level == ALERT_LEVEL_EXPIRED:
        return any(a.is_outstanding for a in alerts)
    return False


@dataclass
class SweepSummary:
    processed: int = 0
    alerts_created: int = 0
    escalations: int = 0
    expired_marked: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ═════════════════════════════════════════════════════════════════════════════
# Escalation targets
# ═════════════════════════════════════════════════════════════════════════════

class EscalationResolver(Protocol):
    def resolve(self, document: Document, alert: DocumentAlert) -> User | None: ...


class DepartmentManagerResolver:
    """An active MANAGER of the owning department, on the first escalation only."""

    def resolve(self, document, alert):
        if alert.escalated_at is not None:
            return None
        department = document.owning_department
        if not department:
            return None
        return db.session.execute(
            select(User)
            .where(User.role == ROLE_MANAGER, User.department == department, User.is_active.is_(True))
            .order_by(User.id)
            .limit(1)
        ).scalar_one_or_none()


class AdminResolver:
    """Any active ADMIN."""

    def resolve(self, document, alert):
        return db.session.execute(
            select(User)
            .where(User.role == ROLE_ADMIN, User.is_active.is_(True))
            .order_by(User.id)
            .limit(1)
        ).scalar_one_or_none()


DEFAULT_ESCALATION_CHAIN: tuple[EscalationResolver, ...] = (
    DepartmentManagerResolver(),
    AdminResolver(),
)


def resolve_escalation_target(document, alert, chain=DEFAULT_ESCALATION_CHAIN) -> User | None:
    """First user any resolver in *chain* returns."""
    for resolver in chain:
        target = resolver.resolve(document, alert)
        if target is not None:
            return target
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════

def _alert_copy(document: Document, level: int, days: int) -> tuple[str, str, str]:
    """(title, message, severity) for an alert notification."""
    if level == ALERT_LEVEL_EXPIRED:
        overdue = abs(days)
        when = "today" if overdue == 0 else f"{overdue} day(s) ago"
        return "Document expired", f'"{document.title}" expired {when}.', "error"
    severity = "warning" if level >= 3 else "info"
    return (
        f"Document expires in {days} day(s)",
        f'"{document.title}" expires in {days} day(s). Review or renew it before it lapses.',
        severity,
    )


class ExpirationAlertService:
    """Expiration sweep, escalation and alert acknowledgement."""

    escalation_chain: tuple[EscalationResolver, ...] = DEFAULT_ESCALATION_CHAIN

    # ── Sweep ─────────────────────────────────────────────────────────────

    @classmethod
    def sweep(cls, now: datetime | None = None, config: AlertConfig | None = None) -> SweepSummary:
        """
        Raise due alerts and escalations for every live document.

        Each document is committed on its own; an error rolls back that
        document only and is reported in ``SweepSummary.errors``.
        """
        now = as_utc(now) if now else utcnow()
        config = config or get_alert_config()
        summary = SweepSummary()

        document_ids = db.session.execute(
            select(Document.id)
            .where(
                Document.expiration_date.is_not(None),
                Document.status.not_in(INACTIVE_DOCUMENT_STATUSES),
            )
            .order_by(Document.id)
        ).scalars().all()
        summary.processed = len(document_ids)

        for document_id in document_ids:
            with log_context(document_id=document_id):
                try:
                    outcome = cls._process_document(document_id, now, config)
                    db.session.commit()
                except Exception as exc:
                    db.session.rollback()
                    logger.exception("Expiration sweep failed for document %s", document_id)
                    summary.errors.append(f"Document {document_id}: {exc}")
                    continue
            if outcome == "alert":
                summary.alerts_created += 1
            elif outcome == "escalated":
                summary.escalations += 1

        try:
            summary.expired_marked = cls._mark_expired(now)
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.exception("Marking expired documents failed")
            summary.errors.append(f"Expiry status update: {exc}")

        logger.info(
            "Expiration sweep: %d documents, %d alerts, %d escalations, %d expired, %d errors",
            summary.processed, summary.alerts_created, summary.escalations,
            summary.expired_marked, len(summary.errors),
            extra={"event_type": "expiration_sweep"},
        )
        return summary

    @classmethod
    def _process_document(cls, document_id: int, now: datetime, config: AlertConfig) -> str | None:
        document = db.session.get(Document, document_id)
        if document is None or document.expiration_date is None:
            return None

        days = days_until(document.expiration_date, now)
        level = compute_alert_level(days, config)
        if level == 0:
            return None

        alerts = cls._alerts_for(document_id)
        if alert_exists_for_level(alerts, level):
            if days < 0 and config.escalation_enabled and cls._escalate_if_due(document, alerts, now, config):
                return "escalated"
            return None

        cls._raise_alert(document, level, days, now, config)
        return "alert"

    @staticmethod
    def _alerts_for(document_id: int) -> list[DocumentAlert]:
        """A document's alerts, most recent first."""
        return db.session.execute(
            select(DocumentAlert)
            .where(DocumentAlert.document_id == document_id)
            .order_by(DocumentAlert.id.desc())
        ).scalars().all()

    @classmethod
    def _raise_alert(cls, document, level, days, now, config) -> DocumentAlert:
        author = document.author
        alert = DocumentAlert(
            document_id=document.id,
            alert_days=days,
            alert_date=now,
            level=level,
            status=ALERT_SENT,
            sent_at=now,
        )
        db.session.add(alert)
        db.session.flush()

        title, message, severity = _alert_copy(document, level, days)
        NotificationService.create(
            user_id=author.id,
            title=title,
            message=message,
            category="expiration",
            severity=severity,
            link=f"/documents/{document.id}",
            alert_id=alert.id,
            document_id=document.id,
            alert_level=level,
            days_until_expiration=days,
            commit=False,
        )
        delivery = DocumentAlertNotification(alert_id=alert.id, user_id=author.id, sent_at=now)
        db.session.add(delivery)
        db.session.flush()

        if config.email_enabled and author.email:
            cls._deliver_email(
                delivery, author, "expiration_alert", now, document,
                headline=title, message=message, level_color=LEVEL_COLORS.get(level, "#3b82f6"),
            )

        logger.info(
            "Alert L%d raised for document %s (%d days)", level, document.id, days,
            extra={"document_id": document.id, "alert_id": alert.id},
        )
        return alert

    @classmethod
    def _escalate_if_due(cls, document, alerts, now, config) -> bool:
        latest = alerts[0] if alerts else None
        if latest is None or latest.status == ALERT_ACKNOWLEDGED:
            return False

        last_touch = as_utc(latest.escalated_at or latest.sent_at)
        if last_touch is None or now - last_touch < timedelta(days=config.escalation_days):
            return False
        if latest.level >= config.max_escalation_level:
            return False

        target = resolve_escalation_target(document, latest, cls.escalation_chain)
        if target is None:
            logger.warning(
                "No escalation target for document %s", document.id,
                extra={"document_id": document.id, "alert_id": latest.id},
            )
            return False

        old_level = latest.level
        new_level = old_level + 1
        days_overdue = max(0, -days_until(document.expiration_date, now))

        latest.level = new_level
        latest.status = ALERT_ESCALATED
        latest.escalated_at = now
        latest.escalated_to = target.id

        NotificationService.create(
            user_id=target.id,
            title=f"Escalation: document overdue by {days_overdue} day(s)",
            message=(
                f'"{document.title}" by {document.author.name} expired {days_overdue} day(s) ago '
                f"and its alert has not been acknowledged."
            ),
            category="escalation",
            severity="error",
            link=f"/documents/{document.id}",
            alert_id=latest.id,
            document_id=document.id,
            alert_level=new_level,
            days_until_expiration=-days_overdue,
            escalated_from_id=document.author_id,
            commit=False,
        )
        delivery = DocumentAlertNotification(alert_id=latest.id, user_id=target.id, sent_at=now)
        db.session.add(delivery)
        db.session.flush()

        if config.email_enabled and target.email:
            cls._deliver_email(
                delivery, target, "escalation_alert", now, document,
                level=new_level, days_overdue=days_overdue, author_name=document.author.name,
            )

        write_audit(
            entity_type="document_alert",
            entity_id=latest.id,
            action="alert.escalate",
            document_id=document.id,
            diff={
                "level": {"old": old_level, "new": new_level},
                "escalated_to": target.id,
                "days_overdue": days_overdue,
            },
        )
        logger.info(
            "Alert %s escalated to L%d → user %s", latest.id, new_level, target.id,
            extra={"document_id": document.id, "alert_id": latest.id},
        )
        return True

    @staticmethod
    def _deliver_email(delivery, recipient, template_name, now, document, **context) -> bool:
        """Best-effort email; ``delivery.email_sent`` is set only on success."""
        base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
        context.update(
            recipient_name=recipient.name,
            document_title=document.title,
            expiration_date=as_utc(document.expiration_date).date().isoformat(),
            document_url=f"{base_url}/documents/{document.id}",
        )
        try:
            log = EmailService.send_from_template(
                to_email=recipient.email,
                to_name=recipient.name,
                template_name=template_name,
                context=context,
                category="expiration",
                document_id=document.id,
            )
        except Exception:
            logger.exception(
                "Email delivery to %s failed", recipient.email,
                extra={"document_id": document.id, "user_id": recipient.id},
            )
            return False
        if log is None or log.status != "sent":
            return False
        delivery.email_sent = True
        delivery.email_sent_at = now
        return True

    @staticmethod
    def _mark_expired(now: datetime) -> int:
        """Move lapsed documents to EXPIRED, one audit row per document."""
        lapsed = db.session.execute(
            select(Document.id, Document.status).where(
                Document.expiration_date.is_not(None),
                Document.expiration_date < now,
                Document.status.in_(EXPIRABLE_DOCUMENT_STATUSES),
            )
        ).all()
        if not lapsed:
            return 0

        db.session.execute(
            update(Document)
            .where(Document.id.in_([doc_id for doc_id, _ in lapsed]))
            .values(status="EXPIRED")
            .execution_options(synchronize_session="fetch")
        )
        for doc_id, old_status in lapsed:
            write_audit(
                entity_type="document",
                entity_id=doc_id,
                action="document.expire",
                document_id=doc_id,
                diff={"status": {"old": old_status, "new": "EXPIRED"}},
            )
        return len(lapsed)

    # ── Single-document and user operations ───────────────────────────────

    @classmethod
    def create_initial_alert(cls, document_id: int, now: datetime | None = None) -> DocumentAlert | None:
        """
        Raise the alert for one document right after its expiration date is set.

        Follows the sweep's rules, so nothing is created when the document is
        outside every threshold or already has an alert for its level.
        """
        now = as_utc(now) if now else utcnow()
        config = get_alert_config()
        document = db.session.get(Document, document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        if document.expiration_date is None or document.status in INACTIVE_DOCUMENT_STATUSES:
            return None

        days = days_until(document.expiration_date, now)
        level = compute_alert_level(days, config)
        if level == 0 or alert_exists_for_level(cls._alerts_for(document_id), level):
            return None

        alert = cls._raise_alert(document, level, days, now, config)
        db.session.commit()
        return alert

    @staticmethod
    def acknowledge(alert_id: int, principal: Principal, now: datetime | None = None) -> DocumentAlert:
        """Mark an alert acknowledged; stops further escalation. Idempotent."""
        alert = db.session.get(DocumentAlert, alert_id)
        if alert is None:
            raise NotFoundError("DocumentAlert", alert_id)
        if not can_acknowledge_alert(principal, alert.document, alert):
            raise ForbiddenError("You may not acknowledge this alert")
        if alert.status == ALERT_ACKNOWLEDGED:
            return alert

        now = as_utc(now) if now else utcnow()
        old_status = alert.status
        alert.status = ALERT_ACKNOWLEDGED
        alert.acknowledged_at = now
        alert.acknowledged_by = principal.id
        write_audit(
            entity_type="document_alert",
            entity_id=alert.id,
            action="alert.acknowledge",
            actor_user_id=principal.id,
            document_id=alert.document_id,
            diff={"status": {"old": old_status, "new": ALERT_ACKNOWLEDGED}},
        )
        db.session.commit()
        logger.info(
            "Alert %s acknowledged by user %s", alert.id, principal.id,
            extra={"alert_id": alert.id, "document_id": alert.document_id},
        )
        return alert

    @staticmethod
    def list_expiring(
        principal: Principal,
        days: int = 30,
        include_expired: bool = True,
        include_acknowledged: bool = False,
        now: datetime | None = None,
    ) -> dict:
        """
        Documents expiring within *days*, bucketed for the dashboard.

        Buckets: ``expired`` (d < 0), ``expiring`` (d <= 7), ``upcoming`` (d <= days).
        Non-admins only see documents they wrote or that belong to their department.
        """
        now = as_utc(now) if now else utcnow()
        horizon = now + timedelta(days=days)

        stmt = select(Document).where(
            Document.expiration_date.is_not(None),
            Document.expiration_date <= horizon,
            Document.status.not_in(INACTIVE_DOCUMENT_STATUSES),
        )
        if not include_expired:
            stmt = stmt.where(Document.expiration_date >= now)
        if not principal.is_admin:
            scope = [Document.author_id == principal.id]
            if principal.department:
                scope.append(Document.department == principal.department)
            stmt = stmt.where(or_(*scope))
        documents = db.session.execute(stmt.order_by(Document.expiration_date)).scalars().all()

        doc_ids = [d.id for d in documents]
        alerts_by_doc: dict[int, list[DocumentAlert]] = {}
        if doc_ids:
            alert_stmt = select(DocumentAlert).where(DocumentAlert.document_id.in_(doc_ids))
            if not include_acknowledged:
                alert_stmt = alert_stmt.where(DocumentAlert.status != ALERT_ACKNOWLEDGED)
            for alert in db.session.execute(alert_stmt.order_by(DocumentAlert.id.desc())).scalars():
                alerts_by_doc.setdefault(alert.document_id, []).append(alert)

        buckets = {"expired": [], "expiring": [], "upcoming": []}
        for document in documents:
            remaining = days_until(document.expiration_date, now)
            entry = document.to_dict()
            entry["days_until_expiration"] = remaining
            entry["author"] = document.author.to_summary() if document.author else None
            entry["alerts"] = [a.to_dict() for a in alerts_by_doc.get(document.id, [])]
            if remaining < 0:
                buckets["expired"].append(entry)
            elif remaining <= 7:
                buckets["expiring"].append(entry)
            else:
                buckets["upcoming"].append(entry)

        alert_counts = {"total": 0, "acknowledged": 0}
        if doc_ids:
            alert_counts["total"] = db.session.execute(
                select(func.count(DocumentAlert.id)).where(DocumentAlert.document_id.in_(doc_ids))
            ).scalar_one()
            alert_counts["acknowledged"] = db.session.execute(
                select(func.count(DocumentAlert.id)).where(
                    DocumentAlert.document_id.in_(doc_ids),
                    DocumentAlert.status == ALERT_ACKNOWLEDGED,
                )
            ).scalar_one()

        return {
            **buckets,
            "summary": {
                "total_expired": len(buckets["expired"]),
                "total_expiring": len(buckets["expiring"]),
                "total_upcoming": len(buckets["upcoming"]),
                "total_alerts": alert_counts["total"],
                "acknowledged_alerts": alert_counts["acknowledged"],
            },
        }
