"""
Document Lifecycle Platform
Approval workflow models.

Models:
    - ApprovalWorkflow: at most one per document; SEQUENTIAL, PARALLEL or ANY
    - ApprovalStep: ordered step bound to exactly one approver predicate
      (a user, a role, or a department)

Workflow lifecycle:
    DRAFT → ACTIVE → COMPLETED
                   ↘ CANCELLED   (any rejection)

Step lifecycle:
    pending → approved | rejected | skipped   (all terminal)
"""

from datetime import datetime, timezone

from doclife.models import db
from doclife.utils.helpers import isoformat

# ── Constants ────────────────────────────────────────────────────────────────

WORKFLOW_SEQUENTIAL = "SEQUENTIAL"
WORKFLOW_PARALLEL = "PARALLEL"
WORKFLOW_ANY = "ANY"

WORKFLOW_TYPES = {WORKFLOW_SEQUENTIAL, WORKFLOW_PARALLEL, WORKFLOW_ANY}

WORKFLOW_DRAFT = "DRAFT"
WORKFLOW_ACTIVE = "ACTIVE"
WORKFLOW_COMPLETED = "COMPLETED"
WORKFLOW_CANCELLED = "CANCELLED"

WORKFLOW_STATUSES = {WORKFLOW_DRAFT, WORKFLOW_ACTIVE, WORKFLOW_COMPLETED, WORKFLOW_CANCELLED}

STEP_PENDING = "pending"
STEP_APPROVED = "approved"
STEP_REJECTED = "rejected"
STEP_SKIPPED = "skipped"

STEP_STATUSES = {STEP_PENDING, STEP_APPROVED, STEP_REJECTED, STEP_SKIPPED}

WORKFLOW_TRANSITIONS = {
    WORKFLOW_DRAFT:     [WORKFLOW_ACTIVE],
    WORKFLOW_ACTIVE:    [WORKFLOW_COMPLETED, WORKFLOW_CANCELLED],
    WORKFLOW_COMPLETED: [],
    WORKFLOW_CANCELLED: [],
}

STEP_TRANSITIONS = {
    STEP_PENDING:  [STEP_APPROVED, STEP_REJECTED, STEP_SKIPPED],
    STEP_APPROVED: [],
    STEP_REJECTED: [],
    STEP_SKIPPED:  [],
}


def validate_workflow_transition(old_status, new_status):
    """Return True if ApprovalWorkflow status transition is valid."""
    return new_status in WORKFLOW_TRANSITIONS.get(old_status, [])


def validate_step_transition(old_status, new_status):
    """Return True if ApprovalStep status transition is valid."""
    return new_status in STEP_TRANSITIONS.get(old_status, [])


class ApprovalWorkflow(db.Model):
    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    type = db.Column(db.String(20), nullable=False, default=WORKFLOW_SEQUENTIAL,
                     comment="SEQUENTIAL | PARALLEL | ANY")
    status = db.Column(db.String(20), nullable=False, default=WORKFLOW_DRAFT,
                       comment="DRAFT | ACTIVE | COMPLETED | CANCELLED")
    current_step = db.Column(db.Integer, nullable=False, default=1)
    total_steps = db.Column(db.Integer, nullable=False, default=0)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    document = db.relationship("Document")
    steps = db.relationship(
        "ApprovalStep", back_populates="workflow",
        cascade="all, delete-orphan", order_by="ApprovalStep.step_number",
    )

    def to_dict(self, include_steps=True):
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "cancelled_at": isoformat(self.cancelled_at),
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        return d

    def __repr__(self):
        return f"<ApprovalWorkflow {self.id}: doc {self.document_id} {self.type} [{self.status}]>"


class ApprovalStep(db.Model):
    __tablename__ = "approval_steps"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_number", name="uq_approval_step_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, nullable=False, comment="1-based position")
    name = db.Column(db.String(200), nullable=False)

    # Approver binding: exactly one of these is set
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    role = db.Column(db.String(20), nullable=True)
    department = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=STEP_PENDING,
                       comment="pending | approved | rejected | skipped")
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    comments = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    workflow = db.relationship("ApprovalWorkflow", back_populates="steps")
    approver = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step_number": self.step_number,
            "name": self.name,
            "user_id": self.user_id,
            "approver": self.approver.to_summary() if self.approver else None,
            "role": self.role,
            "department": self.department,
            "status": self.status,
            "approved_at": isoformat(self.approved_at),
            "approved_by": self.approved_by,
            "rejected_at": isoformat(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "comments": self.comments,
        }

    def __repr__(self):
        return f"<ApprovalStep {self.id}: #{self.step_number} [{self.status}]>"
