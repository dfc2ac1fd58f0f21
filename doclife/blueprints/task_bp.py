"""
Scheduled Task Blueprint.

Endpoints:
    GET    /api/v1/tasks
           ADMIN. Tasks with their last executions, plus stale RUNNING tasks.

    POST   /api/v1/tasks
           ADMIN or X-Cron-Secret.
           Body: { "action": "initialize" | "process-all" | "execute", "taskId": <int> }

    PUT    /api/v1/tasks
           ADMIN. Body: { "taskId": <int>, "enabled": <bool>, "cronExpression": "..." }

Layer contract:
    - Blueprint: parse + validate input, call SchedulerService, return JSON.
    - NO db.session calls here.
"""

import logging

from flask import Blueprint, g, jsonify

from doclife.auth import require_admin_or_cron, require_auth, require_role
from doclife.models.auth import ROLE_ADMIN
from doclife.services.scheduler_service import SchedulerService
from doclife.utils.errors import E, api_error, json_object_body, register_error_handlers

logger = logging.getLogger(__name__)

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1")
register_error_handlers(task_bp)

TASK_ACTIONS = {"initialize", "process-all", "execute"}


def _task_id_from(data):
    raw = data.get("taskId", data.get("task_id"))
    if raw in (None, ""):
        return None, api_error(E.VALIDATION_REQUIRED, "taskId is required")
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "taskId must be an integer")


@task_bp.route("/tasks", methods=["GET"])
@require_auth
@require_role(ROLE_ADMIN)
def list_tasks():
    return jsonify({
        "tasks": SchedulerService.list_tasks(),
        "stale": SchedulerService.find_stale_tasks(),
    })


@task_bp.route("/tasks", methods=["POST"])
@require_admin_or_cron
def trigger_tasks():
    """Seed default tasks, run everything due, or run one task now."""
    data, err = json_object_body()
    if err:
        return err
    action = data.get("action") or ""
    if not isinstance(action, str):
        return api_error(E.VALIDATION_INVALID, "action must be a string")
    action = action.strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    if action not in TASK_ACTIONS:
        return api_error(E.VALIDATION_INVALID, f"action must be one of {sorted(TASK_ACTIONS)}")

    caller = "cron" if g.cron_caller else f"user {g.current_user.id}"

    if action == "initialize":
        created = SchedulerService.initialize_default_tasks()
        logger.info("Default tasks initialised by %s (%d created)", caller, len(created))
        return jsonify({"created": [t.to_dict() for t in created]}), 201 if created else 200

    if action == "process-all":
        logger.info("Due task processing triggered by %s", caller)
        return jsonify(SchedulerService.process_due_tasks())

    task_id, err = _task_id_from(data)
    if err:
        return err
    logger.info("Task %s executed manually by %s", task_id, caller, extra={"task_id": task_id})
    actor_id = None if g.cron_caller else g.current_user.id
    return jsonify(SchedulerService.execute_manually(task_id, actor_user_id=actor_id))


@task_bp.route("/tasks", methods=["PUT"])
@require_auth
@require_role(ROLE_ADMIN)
def update_task():
    data, err = json_object_body()
    if err:
        return err
    task_id, err = _task_id_from(data)
    if err:
        return err
    if "enabled" not in data or not isinstance(data["enabled"], bool):
        return api_error(E.VALIDATION_REQUIRED, "enabled (boolean) is required")
    cron_expression = data.get("cronExpression", data.get("cron_expression"))
    if cron_expression is not None and not isinstance(cron_expression, str):
        return api_error(E.VALIDATION_INVALID, "cronExpression must be a string")

    return jsonify(SchedulerService.toggle_task(
        task_id, data["enabled"], cron_expression, actor_user_id=g.current_user.id,
    ))
