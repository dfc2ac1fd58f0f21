"""
Principal and approver predicates.

A ``Principal`` is the acting user as the services see it: id, role and
department, detached from the ORM session. Approval steps bind to exactly
one approver predicate; ``can_act_on_step`` evaluates it with the ADMIN
override applied.
"""

from dataclasses import dataclass

from doclife.core.exceptions import ForbiddenError, ValidationError
from doclife.models.auth import ROLE_ADMIN, ROLE_MANAGER, USER_ROLES


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
    department: str | None = None

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(id=user.id, role=user.role, department=user.department)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


# ── Approver predicates ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class ByUser:
    user_id: int

    def matches(self, principal: Principal) -> bool:
        return principal.id == self.user_id


@dataclass(frozen=True)
class ByRole:
    role: str

    def matches(self, principal: Principal) -> bool:
        return principal.role == self.role


@dataclass(frozen=True)
class ByDepartment:
    department: str

    def matches(self, principal: Principal) -> bool:
        return principal.department is not None and principal.department == self.department


ApproverPredicate = ByUser | ByRole | ByDepartment


def build_predicate(user_id=None, role=None, department=None) -> ApproverPredicate:
    """Build the single approver predicate for a step definition.

    Raises ValidationError unless exactly one binding is given.
    """
    bindings = [b for b in (user_id, role, department) if b not in (None, "")]
    if len(bindings) != 1:
        raise ValidationError(
            "Each step must name exactly one approver: a user, a role or a department",
            details={"user_id": user_id, "role": role, "department": department},
        )
    if user_id not in (None, ""):
        try:
            return ByUser(int(user_id))
        except (TypeError, ValueError):
            raise ValidationError("user_id must be an integer", details={"user_id": user_id})
    if role not in (None, ""):
        if role not in USER_ROLES:
            raise ValidationError(f"Unknown role '{role}'", details={"role": role})
        return ByRole(role)
    return ByDepartment(department)


def predicate_for(step) -> ApproverPredicate:
    return build_predicate(step.user_id, step.role, step.department)


def can_act_on_step(principal: Principal, step) -> bool:
    """True when *principal* may approve or reject *step*."""
    if principal.is_admin:
        return True
    return predicate_for(step).matches(principal)


def require_step_authority(principal: Principal, step) -> None:
    if not can_act_on_step(principal, step):
        raise ForbiddenError(f"You are not an approver for step {step.step_number}")


def can_manage_document(principal: Principal, document) -> bool:
    """Author or ADMIN: may create and start the document's workflow."""
    return principal.is_admin or document.author_id == principal.id


def can_acknowledge_alert(principal: Principal, document, alert) -> bool:
    """Author, escalation target, a MANAGER of the owning department, or ADMIN."""
    if principal.is_admin or document.author_id == principal.id:
        return True
    if alert.escalated_to is not None and alert.escalated_to == principal.id:
        return True
    return (
        principal.role == ROLE_MANAGER
        and principal.department is not None
        and principal.department == document.owning_department
    )
