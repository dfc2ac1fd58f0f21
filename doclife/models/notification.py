"""
Document Lifecycle Platform
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking.

Alert context (document, level, days until expiration, escalation source)
is carried in typed nullable columns rather than a JSON blob.
"""

from datetime import datetime, timezone

from doclife.models import db
from doclife.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"expiration", "escalation", "workflow", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_user_read", "user_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")
    link = db.Column(db.String(500), nullable=True, comment="Relative UI path, e.g. /documents/42")

    # Alert context
    alert_id = db.Column(
        db.Integer, db.ForeignKey("document_alerts.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    alert_level = db.Column(db.Integer, nullable=True)
    days_until_expiration = db.Column(db.Integer, nullable=True)
    escalated_from_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Document author an escalation was raised on behalf of",
    )

    # Read tracking
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "link": self.link,
            "alert_id": self.alert_id,
            "document_id": self.document_id,
            "alert_level": self.alert_level,
            "days_until_expiration": self.days_until_expiration,
            "escalated_from_id": self.escalated_from_id,
            "is_read": self.is_read,
            "read_at": isoformat(self.read_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]} → user {self.user_id}>"
