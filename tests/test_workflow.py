"""
Tests: approval workflow engine and approver predicates.

Covers:
    1. Predicates (ByUser / ByRole / ByDepartment) + admin override
    2. create / start guards
    3. SEQUENTIAL, PARALLEL and ANY completion rules
    4. Rejection
    5. Outcome evaluation failure after a committed approval
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from conftest import NOW, make_document, make_user
from doclife.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from doclife.models import db
from doclife.models.audit import AuditLog
from doclife.models.document import Document
from doclife.models.notification import Notification
from doclife.models.workflow import ApprovalStep, ApprovalWorkflow
from doclife.services import workflow_service
from doclife.services.permission import (
    ByDepartment,
    ByRole,
    ByUser,
    Principal,
    build_predicate,
    can_act_on_step,
)


def _p(user):
    return Principal.from_user(user)


def _active_workflow(steps, *, workflow_type="SEQUENTIAL", author=None):
    author = author or make_user()
    doc = make_document(author=author, status="DRAFT")
    workflow_service.create_workflow(doc.id, steps, _p(author), workflow_type=workflow_type)
    workflow = workflow_service.start_workflow(doc.id, _p(author), NOW)
    return author, doc, workflow


def _steps(workflow_id):
    return ApprovalStep.query.filter_by(workflow_id=workflow_id).order_by(ApprovalStep.step_number).all()


# ═══════════════════════════════════════════════════════════════════════════
#  Predicates
# ═══════════════════════════════════════════════════════════════════════════

class TestPredicates:
    def test_build_each_kind(self):
        assert build_predicate(user_id=3) == ByUser(3)
        assert build_predicate(role="MANAGER") == ByRole("MANAGER")
        assert build_predicate(department="Quality") == ByDepartment("Quality")

    @pytest.mark.parametrize("kwargs", [
        {}, {"user_id": 1, "role": "MANAGER"}, {"role": "MANAGER", "department": "Q"},
        {"role": "PRESIDENT"}, {"user_id": "abc"},
    ])
    def test_invalid_bindings(self, kwargs):
        with pytest.raises(ValidationError):
            build_predicate(**kwargs)

    def test_matching(self):
        p = Principal(id=7, role="MANAGER", department="Quality")
        assert ByUser(7).matches(p)
        assert not ByUser(8).matches(p)
        assert ByRole("MANAGER").matches(p)
        assert ByDepartment("Quality").matches(p)
        assert not ByDepartment("Legal").matches(p)
        assert not ByDepartment("Legal").matches(Principal(id=1, role="USER"))

    def test_admin_overrides_every_step(self):
        step = ApprovalStep(step_number=1, name="x", user_id=42)
        assert can_act_on_step(Principal(id=1, role="ADMIN"), step)
        assert not can_act_on_step(Principal(id=1, role="MANAGER"), step)


# ═══════════════════════════════════════════════════════════════════════════
#  create / start
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAndStart:
    def test_create_draft(self):
        author = make_user()
        doc = make_document(author=author)
        wf = workflow_service.create_workflow(
            doc.id, [{"name": "Review", "role": "MANAGER"}, {"name": "Sign", "user_id": author.id}],
            _p(author),
        )
        assert wf.status == "DRAFT"
        assert wf.total_steps == 2
        assert [s.step_number for s in _steps(wf.id)] == [1, 2]
        assert AuditLog.query.filter_by(action="workflow.create").count() == 1

    def test_only_author_or_admin_creates(self):
        doc = make_document()
        with pytest.raises(ForbiddenError):
            workflow_service.create_workflow(doc.id, [{"role": "MANAGER"}], _p(make_user()))
        admin = make_user(role="ADMIN")
        assert workflow_service.create_workflow(doc.id, [{"role": "MANAGER"}], _p(admin)).id

    def test_one_workflow_per_document(self):
        author = make_user()
        doc = make_document(author=author)
        workflow_service.create_workflow(doc.id, [{"role": "MANAGER"}], _p(author))
        with pytest.raises(ConflictError):
            workflow_service.create_workflow(doc.id, [{"role": "MANAGER"}], _p(author))

    def test_rejects_bad_type_and_empty_steps(self):
        author = make_user()
        doc = make_document(author=author)
        with pytest.raises(ValidationError):
            workflow_service.create_workflow(doc.id, [{"role": "MANAGER"}], _p(author), workflow_type="RANDOM")
        with pytest.raises(ValidationError):
            workflow_service.create_workflow(doc.id, [], _p(author))

    def test_step_with_two_bindings_rejected(self):
        author = make_user()
        doc = make_document(author=author)
        with pytest.raises(ValidationError):
            workflow_service.create_workflow(doc.id, [{"role": "MANAGER", "user_id": author.id}], _p(author))
        assert ApprovalWorkflow.query.count() == 0

    def test_start_moves_document_to_pending(self):
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}])
        assert wf.status == "ACTIVE"
        assert wf.current_step == 1
        assert db.session.get(Document, doc.id).status == "PENDING"

    def test_start_twice_conflicts(self):
        author, doc, _wf = _active_workflow([{"role": "MANAGER"}])
        with pytest.raises(ConflictError):
            workflow_service.start_workflow(doc.id, _p(author))

    def test_missing_document(self):
        with pytest.raises(NotFoundError):
            workflow_service.get_workflow(999)


# ═══════════════════════════════════════════════════════════════════════════
#  SEQUENTIAL
# ═══════════════════════════════════════════════════════════════════════════

class TestSequential:
    def test_full_approval(self):
        manager = make_user(role="MANAGER")
        signer = make_user(department="Legal")
        author, doc, wf = _active_workflow([{"role": "MANAGER"}, {"department": "Legal"}])
        first, second = _steps(wf.id)

        out = workflow_service.approve_step(doc.id, first.id, _p(manager), comments="ok", now=NOW)
        assert out["outcome"] == "advanced"
        assert out["workflow"]["current_step"] == 2

        out = workflow_service.approve_step(doc.id, second.id, _p(signer), now=NOW)
        assert out["outcome"] == "completed"
        assert out["workflow"]["status"] == "COMPLETED"
        assert db.session.get(Document, doc.id).status == "APPROVED"
        assert Notification.query.filter_by(user_id=author.id, category="workflow").count() == 1

    def test_out_of_order_step_conflicts(self):
        make_user(role="MANAGER")
        signer = make_user(department="Legal")
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}, {"department": "Legal"}])
        second = _steps(wf.id)[1]
        with pytest.raises(ConflictError):
            workflow_service.approve_step(doc.id, second.id, _p(signer))

    def test_wrong_approver_forbidden(self):
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}])
        with pytest.raises(ForbiddenError):
            workflow_service.approve_step(doc.id, _steps(wf.id)[0].id, _p(make_user(role="USER")))

    def test_authority_is_checked_before_state(self):
        manager = make_user(role="MANAGER")
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}, {"role": "MANAGER"}])
        first = _steps(wf.id)[0]
        workflow_service.approve_step(doc.id, first.id, _p(manager))
        with pytest.raises(ForbiddenError):
            workflow_service.approve_step(doc.id, first.id, _p(make_user()))
        with pytest.raises(ConflictError):
            workflow_service.approve_step(doc.id, first.id, _p(manager))

    def test_step_of_another_workflow_not_found(self):
        admin = make_user(role="ADMIN")
        _a, doc_a, _wf_a = _active_workflow([{"role": "MANAGER"}])
        _b, _doc_b, wf_b = _active_workflow([{"role": "MANAGER"}])
        with pytest.raises(NotFoundError):
            workflow_service.approve_step(doc_a.id, _steps(wf_b.id)[0].id, _p(admin))

    def test_draft_workflow_cannot_be_approved(self):
        author = make_user()
        admin = make_user(role="ADMIN")
        doc = make_document(author=author)
        wf = workflow_service.create_workflow(doc.id, [{"role": "MANAGER"}], _p(author))
        with pytest.raises(NotFoundError):
            workflow_service.approve_step(doc.id, _steps(wf.id)[0].id, _p(admin))


# ═══════════════════════════════════════════════════════════════════════════
#  PARALLEL / ANY
# ═══════════════════════════════════════════════════════════════════════════

class TestParallelAndAny:
    def test_parallel_needs_every_step_in_any_order(self):
        a = make_user()
        b = make_user()
        _author, doc, wf = _active_workflow([{"user_id": a.id}, {"user_id": b.id}], workflow_type="PARALLEL")
        first, second = _steps(wf.id)

        out = workflow_service.approve_step(doc.id, second.id, _p(b))
        assert out["outcome"] == "pending"
        assert out["workflow"]["status"] == "ACTIVE"

        out = workflow_service.approve_step(doc.id, first.id, _p(a))
        assert out["outcome"] == "completed"

    def test_any_completes_on_first_approval_and_skips_rest(self):
        a = make_user()
        b = make_user()
        _author, doc, wf = _active_workflow([{"user_id": a.id}, {"user_id": b.id}], workflow_type="ANY")
        second = _steps(wf.id)[1]

        out = workflow_service.approve_step(doc.id, second.id, _p(b))
        assert out["outcome"] == "completed"
        statuses = {s.step_number: s.status for s in _steps(wf.id)}
        assert statuses == {1: "skipped", 2: "approved"}


# ═══════════════════════════════════════════════════════════════════════════
#  Rejection
# ═══════════════════════════════════════════════════════════════════════════

class TestReject:
    def test_reject_cancels_workflow(self):
        manager = make_user(role="MANAGER")
        author, doc, wf = _active_workflow([{"role": "MANAGER"}, {"role": "MANAGER"}])
        first = _steps(wf.id)[0]

        result = workflow_service.reject_step(doc.id, first.id, _p(manager), "Outdated figures", now=NOW)

        assert result.status == "CANCELLED"
        step = db.session.get(ApprovalStep, first.id)
        assert step.status == "rejected"
        assert step.rejection_reason == "Outdated figures"
        assert db.session.get(Document, doc.id).status == "PENDING"
        assert AuditLog.query.filter_by(action="workflow.cancel").count() == 1
        assert Notification.query.filter_by(user_id=author.id).count() == 1

    def test_reason_required(self):
        manager = make_user(role="MANAGER")
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}])
        with pytest.raises(ValidationError):
            workflow_service.reject_step(doc.id, _steps(wf.id)[0].id, _p(manager), "   ")

    def test_any_pending_step_may_be_rejected_in_sequential(self):
        signer = make_user(department="Legal")
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}, {"department": "Legal"}])
        second = _steps(wf.id)[1]
        result = workflow_service.reject_step(doc.id, second.id, _p(signer), "Not compliant")
        assert result.status == "CANCELLED"

    def test_cancelled_workflow_accepts_no_more_actions(self):
        manager = make_user(role="MANAGER")
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}, {"role": "MANAGER"}])
        first, second = _steps(wf.id)
        workflow_service.reject_step(doc.id, first.id, _p(manager), "No")
        with pytest.raises(NotFoundError):
            workflow_service.approve_step(doc.id, second.id, _p(manager))


# ═══════════════════════════════════════════════════════════════════════════
#  Outcome failure
# ═══════════════════════════════════════════════════════════════════════════

class TestOutcomeFailure:
    def test_approval_survives_outcome_error(self):
        manager = make_user(role="MANAGER")
        _author, doc, wf = _active_workflow([{"role": "MANAGER"}])
        step = _steps(wf.id)[0]

        with patch.object(
            workflow_service, "_apply_outcome",
            side_effect=OperationalError("UPDATE", {}, Exception("database is locked")),
        ):
            out = workflow_service.approve_step(doc.id, step.id, _p(manager))

        assert out["outcome"] is None
        assert "database is locked" in out["outcome_error"]
        assert out["step"]["status"] == "approved"
        assert out["workflow"]["status"] == "ACTIVE"
