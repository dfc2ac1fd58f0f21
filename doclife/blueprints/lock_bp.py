"""
Document Lock Blueprint.

Endpoints:
    GET    /api/v1/documents/<id>/lock     lock status for the caller
    POST   /api/v1/documents/<id>/lock     acquire or renew; 409 when held by someone else
           Body (optional): { "sessionId": "..." }
    DELETE /api/v1/documents/<id>/lock     release (ADMIN may release anyone's lock)
    GET    /api/v1/documents/<id>/lock/history
"""

import logging

from flask import Blueprint, g, jsonify, request

from doclife.auth import current_principal, require_auth
from doclife.services.lock_service import DocumentLockService
from doclife.utils.errors import E, api_error, json_object_body, register_error_handlers

logger = logging.getLogger(__name__)

lock_bp = Blueprint("locks", __name__, url_prefix="/api/v1")
register_error_handlers(lock_bp)


@lock_bp.route("/documents/<int:document_id>/lock", methods=["GET"])
@require_auth
def lock_status(document_id):
    return jsonify(DocumentLockService.info(document_id, caller_id=g.current_user.id))


@lock_bp.route("/documents/<int:document_id>/lock", methods=["POST"])
@require_auth
def acquire_lock(document_id):
    data, err = json_object_body()
    if err:
        return err
    session_id = data.get("sessionId") or data.get("session_id")
    if session_id is not None and not isinstance(session_id, str):
        return api_error(E.VALIDATION_INVALID, "sessionId must be a string")
    result = DocumentLockService.acquire(document_id, g.current_user.id, session_id=session_id)
    return jsonify({"success": True, **result}), 200 if result["renewed"] else 201


@lock_bp.route("/documents/<int:document_id>/lock", methods=["DELETE"])
@require_auth
def release_lock(document_id):
    result = DocumentLockService.release(document_id, current_principal())
    return jsonify({"success": True, **result})


@lock_bp.route("/documents/<int:document_id>/lock/history", methods=["GET"])
@require_auth
def lock_history(document_id):
    limit = min(request.args.get("limit", 50, type=int), 200)
    return jsonify({"items": DocumentLockService.interactions(document_id, limit=limit)})
