"""
Service-layer exception hierarchy.

Services raise these types; blueprints register handlers against them
once (see ``doclife.utils.errors.register_error_handlers``) and get the
same HTTP status codes everywhere.

Usage:
    from doclife.core.exceptions import NotFoundError, ConflictError

    raise NotFoundError(resource="Document", resource_id=42)
    raise ConflictError("Workflow is not active", details={"status": "COMPLETED"})
"""

from datetime import datetime


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Document", "ApprovalStep").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint). This
    exception signals that the data was well-formed but violated a
    business rule, e.g. an approval step bound to two approvers at once.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the principal may not perform the operation. Maps to HTTP 403."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the current state of a resource rules out the operation.

    Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        details: Optional structured payload returned to the caller.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class LockConflictError(ConflictError):
    """The document is held by another user's unexpired lock."""

    def __init__(
        self,
        document_id: int,
        holder: dict | None,
        expires_at: datetime | None,
        remaining_seconds: int,
    ) -> None:
        self.document_id = document_id
        self.holder = holder
        self.expires_at = expires_at
        self.remaining_seconds = remaining_seconds
        super().__init__(
            "Document is locked by another user",
            details={
                "locked_by": holder,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "remaining_seconds": remaining_seconds,
            },
        )


class TaskAlreadyRunningError(ConflictError):
    """A run of the scheduled task is already in flight."""

    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} is already running", details={"task_id": task_id})


class TaskDisabledError(ConflictError):
    """The scheduled task is disabled and may not be executed."""

    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} is disabled", details={"task_id": task_id})
