"""
Notification Blueprint.

Endpoints:
    GET    /api/v1/notifications?unread=true&limit=50&offset=0
    POST   /api/v1/notifications/<id>/read
    POST   /api/v1/notifications/read-all

Every route acts on the calling user's own notifications.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from doclife.auth import require_auth
from doclife.services.notification import NotificationService
from doclife.utils.errors import register_error_handlers
from doclife.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
@require_auth
def list_notifications():
    user_id = g.current_user.id
    limit = max(1, min(request.args.get("limit", 50, type=int), 200))
    offset = max(0, request.args.get("offset", 0, type=int))
    items, total = NotificationService.list_for_user(
        user_id,
        unread_only=parse_bool(request.args.get("unread")),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@require_auth
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.current_user.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
@require_auth
def mark_all_read():
    count = NotificationService.mark_all_read(g.current_user.id)
    return jsonify({"marked_read": count})
