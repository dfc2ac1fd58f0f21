"""
Document Lifecycle Platform
Identity model.

Models:
    - User: a person who authors, approves, locks and gets alerted about documents.

Roles are a flat four-level ladder; ``ROLE_HIERARCHY`` lists what each
role implies for ``require_role`` checks.
"""

from datetime import datetime, timezone

from doclife.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ADMIN = "ADMIN"
ROLE_MANAGER = "MANAGER"
ROLE_USER = "USER"
ROLE_VIEWER = "VIEWER"

USER_ROLES = {ROLE_ADMIN, ROLE_MANAGER, ROLE_USER, ROLE_VIEWER}

ROLE_HIERARCHY = {
    ROLE_ADMIN: {ROLE_ADMIN, ROLE_MANAGER, ROLE_USER, ROLE_VIEWER},
    ROLE_MANAGER: {ROLE_MANAGER, ROLE_USER, ROLE_VIEWER},
    ROLE_USER: {ROLE_USER, ROLE_VIEWER},
    ROLE_VIEWER: {ROLE_VIEWER},
}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER,
                     comment="ADMIN | MANAGER | USER | VIEWER")
    department = db.Column(db.String(100), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def has_role(self, role: str) -> bool:
        """True when this user's role implies *role*."""
        return role in ROLE_HIERARCHY.get(self.role, set())

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "department": self.department,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
