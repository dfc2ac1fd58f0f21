"""
Document Lifecycle Platform
Edit lock models.

Models:
    - DocumentLock: exclusive, time-boxed edit lease; at most one row per document
    - DocumentInteraction: append-only history of lock/unlock events

A lock whose ``expires_at`` has passed is treated as absent. It is reclaimed
lazily by the next acquire and swept by the ``cleanup_locks`` task.
"""

from datetime import datetime, timezone

from doclife.models import db
from doclife.utils.helpers import as_utc, isoformat

INTERACTION_ACTIONS = {"lock", "renew", "unlock", "force_unlock", "expire"}


class DocumentLock(db.Model):
    __tablename__ = "document_locks"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    session_id = db.Column(db.String(128), nullable=True, comment="Editor session that took the lease")
    locked_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    holder = db.relationship("User", foreign_keys=[user_id])

    def is_expired(self, now) -> bool:
        return now > as_utc(self.expires_at)

    def remaining_seconds(self, now) -> int:
        return max(0, int((as_utc(self.expires_at) - now).total_seconds()))

    def to_dict(self, now=None):
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "user_id": self.user_id,
            "locked_by": self.holder.to_summary() if self.holder else None,
            "session_id": self.session_id,
            "locked_at": isoformat(self.locked_at),
            "expires_at": isoformat(self.expires_at),
        }
        if now is not None:
            d["remaining_seconds"] = self.remaining_seconds(now)
        return d

    def __repr__(self):
        return f"<DocumentLock doc {self.document_id} by user {self.user_id}>"


class DocumentInteraction(db.Model):
    __tablename__ = "document_interactions"
    __table_args__ = (
        db.Index("idx_interaction_document_ts", "document_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = db.Column(db.String(30), nullable=False, comment="lock | renew | unlock | force_unlock | expire")
    session_id = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "action": self.action,
            "session_id": self.session_id,
            "created_at": isoformat(self.created_at),
        }
