"""
Document Lifecycle Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import UTC, datetime

from doclife.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "document", "document_alert", "document_lock",
    "approval_workflow", "approval_step", "scheduled_task",
}

AUDIT_ACTIONS = {
    # Alerts
    "alert.escalate",
    "alert.acknowledge",
    # Workflow lifecycle
    "workflow.create",
    "workflow.start",
    "workflow.step_approve",
    "workflow.step_reject",
    "workflow.complete",
    "workflow.cancel",
    # Locks
    "lock.acquire",
    "lock.release",
    "lock.force_release",
    # Tasks
    "task.execute",
    "task.toggle",
    # Documents
    "document.expire",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action.  ``diff_json`` carries old→new snapshots
    or the event's structured context.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_document", "document_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="document | document_alert | approval_workflow | …",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (int-as-string)",
    )
    document_id = db.Column(
        db.Integer,
        db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=True,
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="alert.escalate | workflow.step_approve | lock.acquire | …",
    )
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL for system-initiated entries",
    )
    ip_address = db.Column(db.String(45), nullable=True)

    # Change payload
    diff_json = db.Column(
        db.Text, default="{}",
        comment="JSON: {field: {old, new}} or event context",
    )

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "document_id": self.document_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "ip_address": self.ip_address,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    document_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Outside a request (scheduled tasks) the IP address is left empty.

    Returns the (flushed) AuditLog instance.
    """
    from flask import has_request_context, request

    ip_address = request.remote_addr if has_request_context() else None

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        document_id=document_id,
        action=action,
        actor_user_id=actor_user_id,
        ip_address=ip_address,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
