"""
Document Lifecycle Platform
Expiration alert models.

Models:
    - AlertConfiguration: thresholds and escalation policy (single row, optional)
    - DocumentAlert: one alert per (document, level), raised by the expiration sweep
    - DocumentAlertNotification: which users an alert reached, and whether email went out

Alert levels:
    1..4  expiring within the first/second/third/final threshold
    5     already expired
"""

from datetime import datetime, timezone

from doclife.models import db
from doclife.utils.helpers import isoformat

# ── Constants ────────────────────────────────────────────────────────────────

ALERT_SENT = "sent"
ALERT_ACKNOWLEDGED = "acknowledged"
ALERT_ESCALATED = "escalated"

ALERT_STATUSES = {ALERT_SENT, ALERT_ACKNOWLEDGED, ALERT_ESCALATED}
OUTSTANDING_ALERT_STATUSES = {ALERT_SENT, ALERT_ESCALATED}

ALERT_LEVEL_EXPIRED = 5


class AlertConfiguration(db.Model):
    """
    Expiration alert policy.

    The first row wins; when the table is empty the application
    config defaults apply (see ``alert_engine.get_alert_config``).
    """

    __tablename__ = "alert_configurations"

    id = db.Column(db.Integer, primary_key=True)
    first_alert_days = db.Column(db.Integer, nullable=False, default=30)
    second_alert_days = db.Column(db.Integer, nullable=False, default=15)
    third_alert_days = db.Column(db.Integer, nullable=False, default=7)
    final_alert_days = db.Column(db.Integer, nullable=False, default=1)
    escalation_enabled = db.Column(db.Boolean, nullable=False, default=True)
    escalation_days = db.Column(db.Integer, nullable=False, default=3,
                                comment="Days an unacknowledged alert waits before escalating")
    max_escalation_level = db.Column(db.Integer, nullable=False, default=3)
    email_enabled = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return (
            f"<AlertConfiguration {self.first_alert_days}/{self.second_alert_days}/"
            f"{self.third_alert_days}/{self.final_alert_days}>"
        )


class DocumentAlert(db.Model):
    __tablename__ = "document_alerts"
    __table_args__ = (
        db.Index("idx_alert_document_level", "document_id", "level"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    alert_days = db.Column(db.Integer, nullable=False,
                           comment="Days until expiration when raised (negative if overdue)")
    alert_date = db.Column(db.DateTime(timezone=True), nullable=False)
    level = db.Column(db.Integer, nullable=False, default=1, comment="1..5; raised by escalation")
    status = db.Column(db.String(20), nullable=False, default=ALERT_SENT,
                       comment="sent | acknowledged | escalated")
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escalated_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    document = db.relationship("Document")
    notifications = db.relationship(
        "DocumentAlertNotification", back_populates="alert",
        cascade="all, delete-orphan", order_by="DocumentAlertNotification.id",
    )

    @property
    def is_outstanding(self) -> bool:
        return self.status in OUTSTANDING_ALERT_STATUSES

    def to_dict(self, include_notifications=False):
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "alert_days": self.alert_days,
            "alert_date": isoformat(self.alert_date),
            "level": self.level,
            "status": self.status,
            "sent_at": isoformat(self.sent_at),
            "escalated_at": isoformat(self.escalated_at),
            "escalated_to": self.escalated_to,
            "acknowledged_at": isoformat(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
        }
        if include_notifications:
            d["notifications"] = [n.to_dict() for n in self.notifications]
        return d

    def __repr__(self):
        return f"<DocumentAlert {self.id}: doc {self.document_id} L{self.level} [{self.status}]>"


class DocumentAlertNotification(db.Model):
    __tablename__ = "document_alert_notifications"

    id = db.Column(db.Integer, primary_key=True)
    alert_id = db.Column(
        db.Integer, db.ForeignKey("document_alerts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False)
    email_sent = db.Column(db.Boolean, nullable=False, default=False)
    email_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    alert = db.relationship("DocumentAlert", back_populates="notifications")

    def to_dict(self):
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "sent_at": isoformat(self.sent_at),
            "email_sent": self.email_sent,
            "email_sent_at": isoformat(self.email_sent_at),
        }
