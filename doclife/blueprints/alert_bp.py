"""
Expiration Alert Blueprint.

Endpoints:
    GET    /api/v1/documents/expiring?days=30&expired=true&acknowledged=false
           Expired / expiring / upcoming buckets with a summary.

    POST   /api/v1/alerts/process
           ADMIN or X-Cron-Secret. Runs one expiration sweep now.

    POST   /api/v1/alerts/<id>/acknowledge
           Author, escalation target, department MANAGER or ADMIN.
"""

import logging

from flask import Blueprint, jsonify, request

from doclife.auth import current_principal, require_admin_or_cron, require_auth
from doclife.services.alert_engine import ExpirationAlertService
from doclife.utils.errors import E, api_error, register_error_handlers
from doclife.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

alert_bp = Blueprint("alerts", __name__, url_prefix="/api/v1")
register_error_handlers(alert_bp)

MAX_HORIZON_DAYS = 365


@alert_bp.route("/documents/expiring", methods=["GET"])
@require_auth
def expiring_documents():
    days = request.args.get("days", 30, type=int)
    if days is None or days < 0 or days > MAX_HORIZON_DAYS:
        return api_error(E.VALIDATION_INVALID, f"days must be between 0 and {MAX_HORIZON_DAYS}")

    return jsonify(ExpirationAlertService.list_expiring(
        current_principal(),
        days=days,
        include_expired=parse_bool(request.args.get("expired"), default=True),
        include_acknowledged=parse_bool(request.args.get("acknowledged"), default=False),
    ))


@alert_bp.route("/alerts/process", methods=["POST"])
@require_admin_or_cron
def process_alerts():
    summary = ExpirationAlertService.sweep()
    return jsonify({"success": True, **summary.to_dict()})


@alert_bp.route("/alerts/<int:alert_id>/acknowledge", methods=["POST"])
@require_auth
def acknowledge_alert(alert_id):
    alert = ExpirationAlertService.acknowledge(alert_id, current_principal())
    return jsonify({"alert": alert.to_dict()})
