"""
Approval Workflow Service.

Drives the approval state machine for a document: one workflow per
document, an ordered list of steps, each bound to exactly one approver
predicate (a user, a role or a department).

Workflow types:
    SEQUENTIAL  steps are approved in order; only the current step is open
    PARALLEL    any pending step may be approved; all must approve
    ANY         the first approval completes the workflow

Design decisions:
    - The step approval is committed before the workflow outcome is
      evaluated. If evaluating the outcome fails, the approval stands and
      the failure is returned as ``outcome_error``.
    - Rejecting any pending step cancels the workflow at once, whatever the
      other steps' states.
    - Rejection leaves the document status unchanged.
    - ADMIN may act on any step.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from doclife.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from doclife.models import db
from doclife.models.audit import write_audit
from doclife.models.document import Document
from doclife.models.workflow import (
    STEP_APPROVED,
    STEP_PENDING,
    STEP_REJECTED,
    STEP_SKIPPED,
    WORKFLOW_ACTIVE,
    WORKFLOW_ANY,
    WORKFLOW_CANCELLED,
    WORKFLOW_COMPLETED,
    WORKFLOW_DRAFT,
    WORKFLOW_SEQUENTIAL,
    WORKFLOW_TYPES,
    ApprovalStep,
    ApprovalWorkflow,
    validate_step_transition,
    validate_workflow_transition,
)
from doclife.services.notification import NotificationService
from doclife.services.permission import (
    Principal,
    build_predicate,
    can_manage_document,
    require_step_authority,
)
from doclife.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now else utcnow()


def _get_document(document_id: int) -> Document:
    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    return document


def _workflow_for(document_id: int) -> ApprovalWorkflow | None:
    return db.session.execute(
        select(ApprovalWorkflow).where(ApprovalWorkflow.document_id == document_id)
    ).scalar_one_or_none()


def _active_workflow_for(document_id: int) -> ApprovalWorkflow:
    workflow = _workflow_for(document_id)
    if workflow is None or workflow.status != WORKFLOW_ACTIVE:
        raise NotFoundError("Active ApprovalWorkflow for document", document_id)
    return workflow


def _step_in(workflow: ApprovalWorkflow, step_id: int) -> ApprovalStep:
    step = db.session.get(ApprovalStep, step_id)
    if step is None or step.workflow_id != workflow.id:
        raise NotFoundError("ApprovalStep", step_id)
    return step


def _move_workflow(workflow: ApprovalWorkflow, new_status: str) -> None:
    if not validate_workflow_transition(workflow.status, new_status):
        raise ConflictError(
            f"Workflow cannot move from {workflow.status} to {new_status}",
            details={"status": workflow.status},
        )
    workflow.status = new_status


def _move_step(step: ApprovalStep, new_status: str) -> None:
    if not validate_step_transition(step.status, new_status):
        raise ConflictError(
            f"Step {step.step_number} is already {step.status}",
            details={"step_id": step.id, "status": step.status},
        )
    step.status = new_status


def _notify_author(workflow: ApprovalWorkflow, title: str, message: str, severity: str) -> None:
    NotificationService.create(
        user_id=workflow.document.author_id,
        title=title,
        message=message,
        category="workflow",
        severity=severity,
        link=f"/documents/{workflow.document_id}",
        document_id=workflow.document_id,
        commit=False,
    )


# ── Public API ─────────────────────────────────────────────────────────────────


def create_workflow(
    document_id: int,
    steps: list[dict],
    principal: Principal,
    workflow_type: str = WORKFLOW_SEQUENTIAL,
    name: str | None = None,
    description: str | None = None,
) -> ApprovalWorkflow:
    """Create a DRAFT workflow for a document.

    Args:
        steps: ordered step definitions, each a dict with ``name`` and exactly
               one of ``user_id``, ``role`` or ``department``.

    Raises:
        NotFoundError: no such document.
        ForbiddenError: principal is neither the author nor an ADMIN.
        ConflictError: the document already has a workflow.
        ValidationError: unknown type, no steps, or a step without exactly one binding.
    """
    document = _get_document(document_id)
    if not can_manage_document(principal, document):
        raise ForbiddenError("Only the document author or an administrator can create its workflow")
    if workflow_type not in WORKFLOW_TYPES:
        raise ValidationError(
            f"Unknown workflow type '{workflow_type}'", details={"type": sorted(WORKFLOW_TYPES)},
        )
    if not steps:
        raise ValidationError("A workflow needs at least one step", details={"steps": "required"})
    if _workflow_for(document_id) is not None:
        raise ConflictError("Document already has an approval workflow", details={"document_id": document_id})

    workflow = ApprovalWorkflow(
        document_id=document_id,
        name=name or f"Approval of {document.title}",
        description=description or "",
        type=workflow_type,
        status=WORKFLOW_DRAFT,
        current_step=1,
        total_steps=len(steps),
        created_by=principal.id,
    )
    for number, definition in enumerate(steps, start=1):
        predicate = build_predicate(definition.get("user_id"), definition.get("role"), definition.get("department"))
        workflow.steps.append(ApprovalStep(
            step_number=number,
            name=definition.get("name") or f"Step {number}",
            user_id=getattr(predicate, "user_id", None),
            role=getattr(predicate, "role", None),
            department=getattr(predicate, "department", None),
            status=STEP_PENDING,
        ))
    db.session.add(workflow)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Document already has an approval workflow", details={"document_id": document_id})

    write_audit(
        entity_type="approval_workflow",
        entity_id=workflow.id,
        action="workflow.create",
        actor_user_id=principal.id,
        document_id=document_id,
        diff={"type": workflow_type, "total_steps": len(steps)},
    )
    db.session.commit()
    logger.info(
        "Workflow %s created for document %s (%s, %d steps)",
        workflow.id, document_id, workflow_type, len(steps),
        extra={"workflow_id": workflow.id, "document_id": document_id, "user_id": principal.id},
    )
    return workflow


def start_workflow(document_id: int, principal: Principal, now: datetime | None = None) -> ApprovalWorkflow:
    """DRAFT → ACTIVE; the document moves to PENDING."""
    document = _get_document(document_id)
    workflow = _workflow_for(document_id)
    if workflow is None:
        raise NotFoundError("ApprovalWorkflow for document", document_id)
    if not can_manage_document(principal, document):
        raise ForbiddenError("Only the document author or an administrator can start its workflow")
    if workflow.status != WORKFLOW_DRAFT:
        raise ConflictError(
            f"Workflow is {workflow.status}; only a DRAFT workflow can be started",
            details={"status": workflow.status},
        )

    now = _now(now)
    _move_workflow(workflow, WORKFLOW_ACTIVE)
    workflow.current_step = 1
    workflow.started_at = now
    old_doc_status = document.status
    document.status = "PENDING"

    write_audit(
        entity_type="approval_workflow",
        entity_id=workflow.id,
        action="workflow.start",
        actor_user_id=principal.id,
        document_id=document_id,
        diff={"document_status": {"old": old_doc_status, "new": "PENDING"}},
    )
    db.session.commit()
    logger.info("Workflow %s started", workflow.id,
                extra={"workflow_id": workflow.id, "document_id": document_id})
    return workflow


def approve_step(
    document_id: int,
    step_id: int,
    principal: Principal,
    comments: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Approve one step, then evaluate the workflow outcome.

    Returns:
        ``{"step", "workflow", "outcome", "outcome_error"}``; ``outcome`` is one
        of completed, cancelled, advanced, pending (None when evaluation failed).
    """
    workflow = _active_workflow_for(document_id)
    step = _step_in(workflow, step_id)
    require_step_authority(principal, step)
    if step.status != STEP_PENDING:
        raise ConflictError(
            f"Step {step.step_number} is already {step.status}",
            details={"step_id": step.id, "status": step.status},
        )
    if workflow.type == WORKFLOW_SEQUENTIAL and step.step_number != workflow.current_step:
        raise ConflictError(
            f"Step {step.step_number} is not the current step",
            details={"current_step": workflow.current_step},
        )

    now = _now(now)
    _move_step(step, STEP_APPROVED)
    step.approved_at = now
    step.approved_by = principal.id
    if comments:
        step.comments = comments
    write_audit(
        entity_type="approval_step",
        entity_id=step.id,
        action="workflow.step_approve",
        actor_user_id=principal.id,
        document_id=document_id,
        diff={"step_number": step.step_number, "status": {"old": STEP_PENDING, "new": STEP_APPROVED}},
    )
    db.session.commit()

    workflow_id = workflow.id
    outcome = None
    outcome_error = None
    try:
        outcome = _apply_outcome(workflow, principal, now)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        outcome_error = str(exc)
        logger.exception(
            "Workflow %s: step %s approved but outcome evaluation failed", workflow_id, step_id,
            extra={"workflow_id": workflow_id, "document_id": document_id},
        )

    workflow = db.session.get(ApprovalWorkflow, workflow_id)
    step = db.session.get(ApprovalStep, step_id)
    return {
        "step": step.to_dict(),
        "workflow": workflow.to_dict(),
        "outcome": outcome,
        "outcome_error": outcome_error,
    }


def _apply_outcome(workflow: ApprovalWorkflow, principal: Principal, now: datetime) -> str:
    steps = list(workflow.steps)

    if any(s.status == STEP_REJECTED for s in steps):
        _move_workflow(workflow, WORKFLOW_CANCELLED)
        workflow.cancelled_at = now
        return "cancelled"

    approved = [s for s in steps if s.status == STEP_APPROVED]
    if (workflow.type == WORKFLOW_ANY and approved) or len(approved) == len(steps):
        for s in steps:
            if s.status == STEP_PENDING:
                _move_step(s, STEP_SKIPPED)
        _move_workflow(workflow, WORKFLOW_COMPLETED)
        workflow.completed_at = now
        document = workflow.document
        old_doc_status = document.status
        document.status = "APPROVED"
        write_audit(
            entity_type="approval_workflow",
            entity_id=workflow.id,
            action="workflow.complete",
            actor_user_id=principal.id,
            document_id=workflow.document_id,
            diff={
                "document_status": {"old": old_doc_status, "new": "APPROVED"},
                "skipped_steps": [s.step_number for s in steps if s.status == STEP_SKIPPED],
            },
        )
        _notify_author(
            workflow, "Document approved",
            f'"{document.title}" completed its approval workflow.', "success",
        )
        logger.info("Workflow %s completed", workflow.id,
                    extra={"workflow_id": workflow.id, "document_id": workflow.document_id})
        return "completed"

    if workflow.type == WORKFLOW_SEQUENTIAL:
        next_step = next(
            (s for s in steps if s.status == STEP_PENDING and s.step_number > workflow.current_step),
            None,
        )
        if next_step is not None:
            workflow.current_step = next_step.step_number
            return "advanced"
    return "pending"


def reject_step(
    document_id: int,
    step_id: int,
    principal: Principal,
    reason: str | None,
    comments: str | None = None,
    now: datetime | None = None,
) -> ApprovalWorkflow:
    """Reject a pending step and cancel the workflow."""
    if not (reason or "").strip():
        raise ValidationError("A rejection reason is required", details={"rejection_reason": "required"})

    workflow = _active_workflow_for(document_id)
    step = _step_in(workflow, step_id)
    require_step_authority(principal, step)

    now = _now(now)
    _move_step(step, STEP_REJECTED)
    step.rejected_at = now
    step.rejected_by = principal.id
    step.rejection_reason = reason.strip()
    if comments:
        step.comments = comments

    _move_workflow(workflow, WORKFLOW_CANCELLED)
    workflow.cancelled_at = now

    write_audit(
        entity_type="approval_step",
        entity_id=step.id,
        action="workflow.step_reject",
        actor_user_id=principal.id,
        document_id=document_id,
        diff={"step_number": step.step_number, "reason": step.rejection_reason},
    )
    write_audit(
        entity_type="approval_workflow",
        entity_id=workflow.id,
        action="workflow.cancel",
        actor_user_id=principal.id,
        document_id=document_id,
        diff={"status": {"old": WORKFLOW_ACTIVE, "new": WORKFLOW_CANCELLED}},
    )
    _notify_author(
        workflow, "Document rejected",
        f'Step "{step.name}" was rejected: {step.rejection_reason}', "warning",
    )
    db.session.commit()
    logger.info("Workflow %s cancelled by rejection of step %s", workflow.id, step.step_number,
                extra={"workflow_id": workflow.id, "document_id": document_id, "user_id": principal.id})
    return workflow


def get_workflow(document_id: int) -> dict | None:
    """The document's workflow with its ordered steps, or None."""
    _get_document(document_id)
    workflow = _workflow_for(document_id)
    return workflow.to_dict() if workflow else None
