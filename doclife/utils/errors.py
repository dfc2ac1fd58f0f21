"""Standardised API error responses.

Usage
-----
    from doclife.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Document not found")
    return api_error(E.VALIDATION_REQUIRED, "stepId is required")
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from doclife.core.exceptions import (
    ConflictError,
    ForbiddenError,
    LockConflictError,
    NotFoundError,
    TaskAlreadyRunningError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation: HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule: HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Auth: HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found: HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict: HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_LOCKED = "ERR_CONFLICT_LOCKED"
    CONFLICT_RUNNING = "ERR_CONFLICT_RUNNING"

    # Server: HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_LOCKED: 409,
    E.CONFLICT_RUNNING: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (lock holder, task id, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)``, drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status



def json_object_body():
    """The request's JSON body as a dict.

    Returns ``(data, None)``, or ``(None, error_response)`` when the body is
    valid JSON but not an object. A missing or unparseable body reads as ``{}``.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def register_error_handlers(bp: Blueprint) -> None:
    """Map the service exception hierarchy onto HTTP responses for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _not_found(exc: NotFoundError):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(ForbiddenError)
    def _forbidden(exc: ForbiddenError):
        return api_error(E.FORBIDDEN, str(exc))

    @bp.errorhandler(ValidationError)
    def _validation(exc: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)

    @bp.errorhandler(ConflictError)
    def _conflict(exc: ConflictError):
        if isinstance(exc, LockConflictError):
            code = E.CONFLICT_LOCKED
        elif isinstance(exc, TaskAlreadyRunningError):
            code = E.CONFLICT_RUNNING
        else:
            code = E.CONFLICT_STATE
        logger.info("Conflict on %s: %s", bp.name, exc)
        return api_error(code, str(exc), details=exc.details)
