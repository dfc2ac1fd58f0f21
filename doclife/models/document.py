"""
Document Lifecycle Platform
Document model.

Only the fields the coordination services read or write live here:
status, expiration date, author and owning department.
"""

from datetime import datetime, timezone

from doclife.models import db
from doclife.utils.helpers import isoformat

# ── Constants ────────────────────────────────────────────────────────────────

DOCUMENT_STATUSES = {
    "DRAFT", "PENDING", "APPROVED", "PUBLISHED", "EXPIRED", "CANCELLED", "ARCHIVED",
}

# Documents in these states are never swept for expiration.
INACTIVE_DOCUMENT_STATUSES = {"CANCELLED", "ARCHIVED"}

# States that flip to EXPIRED once the expiration date has passed.
EXPIRABLE_DOCUMENT_STATUSES = {"DRAFT", "PENDING", "APPROVED", "PUBLISHED"}


class Document(db.Model):
    __tablename__ = "documents"
    __table_args__ = (
        db.Index("idx_document_status_expiry", "status", "expiration_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    document_number = db.Column(db.String(50), nullable=True, unique=True)
    status = db.Column(db.String(20), nullable=False, default="DRAFT",
                       comment="DRAFT | PENDING | APPROVED | PUBLISHED | EXPIRED | CANCELLED | ARCHIVED")
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=True)
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    department = db.Column(db.String(100), nullable=True, index=True,
                           comment="Owning department; falls back to the author's")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    author = db.relationship("User", foreign_keys=[author_id])

    @property
    def owning_department(self) -> str | None:
        if self.department:
            return self.department
        return self.author.department if self.author else None

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "document_number": self.document_number,
            "status": self.status,
            "expiration_date": isoformat(self.expiration_date),
            "author_id": self.author_id,
            "department": self.owning_department,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.title[:40]} [{self.status}]>"
