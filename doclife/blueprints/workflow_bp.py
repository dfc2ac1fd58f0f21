"""
Approval Workflow Blueprint.

Endpoints:
    GET    /api/v1/documents/<id>/workflow
           Returns: 200 with the workflow and its steps, or {"workflow": null}.

    POST   /api/v1/documents/<id>/workflow
           Body: { "name": "...", "description": "...",
                   "type": "SEQUENTIAL|PARALLEL|ANY",
                   "steps": [{"name": "...", "userId": 3} | {"roleId": "MANAGER"}
                             | {"departmentId": "Quality"}, ...] }
           Returns: 201 with the DRAFT workflow.

    PUT    /api/v1/documents/<id>/workflow
           Body: { "action": "start|approve|reject", "stepId": <int>,
                   "comments": "...", "rejectionReason": "..." }

Layer contract:
    - Blueprint: parse + validate input, call workflow_service, return JSON.
    - Business guards (approver predicates, state checks) live in the service.
"""

import logging

from flask import Blueprint, jsonify

from doclife.auth import current_principal, require_auth
from doclife.services import workflow_service
from doclife.utils.errors import E, api_error, json_object_body, register_error_handlers

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflows", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)

WORKFLOW_ACTIONS = {"start", "approve", "reject"}


def _step_definition(raw: dict) -> dict:
    """Accept both camelCase and snake_case step keys."""
    return {
        "name": raw.get("name"),
        "user_id": raw.get("userId", raw.get("user_id")),
        "role": raw.get("roleId", raw.get("role")),
        "department": raw.get("departmentId", raw.get("department")),
    }


def _check_optional_strings(data: dict, *keys):
    for key in keys:
        if data.get(key) is not None and not isinstance(data[key], str):
            return api_error(E.VALIDATION_INVALID, f"{key} must be a string")
    return None


@workflow_bp.route("/documents/<int:document_id>/workflow", methods=["GET"])
@require_auth
def get_workflow(document_id):
    return jsonify({"workflow": workflow_service.get_workflow(document_id)})


@workflow_bp.route("/documents/<int:document_id>/workflow", methods=["POST"])
@require_auth
def create_workflow(document_id):
    data, err = json_object_body()
    if err:
        return err
    steps = data.get("steps")
    if not isinstance(steps, list) or not steps:
        return api_error(E.VALIDATION_REQUIRED, "steps must be a non-empty list")
    if not all(isinstance(s, dict) for s in steps):
        return api_error(E.VALIDATION_INVALID, "each step must be an object")

    workflow_type = data.get("type") or "SEQUENTIAL"
    if not isinstance(workflow_type, str):
        return api_error(E.VALIDATION_INVALID, "type must be a string")
    err = _check_optional_strings(data, "name", "description")
    if err:
        return err

    workflow = workflow_service.create_workflow(
        document_id,
        [_step_definition(s) for s in steps],
        current_principal(),
        workflow_type=workflow_type.upper(),
        name=data.get("name"),
        description=data.get("description"),
    )
    return jsonify({"workflow": workflow.to_dict()}), 201


@workflow_bp.route("/documents/<int:document_id>/workflow", methods=["PUT"])
@require_auth
def act_on_workflow(document_id):
    data, err = json_object_body()
    if err:
        return err
    action = data.get("action") or ""
    action = action.strip().lower() if isinstance(action, str) else None
    if action not in WORKFLOW_ACTIONS:
        return api_error(E.VALIDATION_INVALID, f"action must be one of {sorted(WORKFLOW_ACTIONS)}")

    principal = current_principal()
    if action == "start":
        workflow = workflow_service.start_workflow(document_id, principal)
        return jsonify({"workflow": workflow.to_dict()})

    raw_step = data.get("stepId", data.get("step_id"))
    if raw_step in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "stepId is required")
    try:
        step_id = int(raw_step)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "stepId must be an integer")
    err = _check_optional_strings(data, "comments", "rejectionReason", "rejection_reason")
    if err:
        return err
    comments = data.get("comments")

    if action == "approve":
        result = workflow_service.approve_step(document_id, step_id, principal, comments=comments)
        return jsonify(result)

    reason = (data.get("rejectionReason") or data.get("rejection_reason") or "").strip()
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "rejectionReason is required")
    workflow = workflow_service.reject_step(document_id, step_id, principal, reason, comments=comments)
    return jsonify({"workflow": workflow.to_dict()})
