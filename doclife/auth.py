"""
Document Lifecycle Platform
Authentication & Authorization Middleware.

Provides:
    - Principal resolution from the X-User-Id header (set by the fronting
      identity proxy) onto ``g.current_user``
    - ``require_auth`` / ``require_role`` decorators
    - ``require_admin_or_cron`` for task and sweep triggers, which an
      external cron may call with the shared X-Cron-Secret instead of a user
    - CSRF protection for state-changing requests (JSON Content-Type only)

Configuration:
    CRON_SECRET  shared secret accepted in X-Cron-Secret; unset disables it
"""

import functools
import hmac
import logging

from flask import current_app, g, jsonify, request

from doclife.models import db
from doclife.models.auth import ROLE_ADMIN, ROLE_HIERARCHY, User
from doclife.services.permission import Principal

logger = logging.getLogger(__name__)

_UNSET = object()


# ── Principal resolution ─────────────────────────────────────────────────────

def get_current_user() -> User | None:
    """Resolve the request's principal once and cache it on ``g``."""
    cached = getattr(g, "current_user", _UNSET)
    if cached is not _UNSET:
        return cached

    user = None
    raw = request.headers.get("X-User-Id", "").strip()
    if raw:
        try:
            user_id = int(raw)
        except ValueError:
            logger.warning("Malformed X-User-Id header: %r", raw[:20])
        else:
            user = db.session.get(User, user_id)
            if user is not None and not user.is_active:
                logger.warning("Inactive user %s attempted access to %s", user_id, request.path)
                user = None
    g.current_user = user
    return user


def current_principal() -> Principal:
    """The authenticated user as a service-layer ``Principal``.

    Only valid inside a ``require_auth``-protected view.
    """
    return Principal.from_user(g.current_user)


def has_valid_cron_secret() -> bool:
    expected = current_app.config.get("CRON_SECRET")
    provided = request.headers.get("X-Cron-Secret", "")
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


# ── Authentication decorators ────────────────────────────────────────────────

def require_auth(f):
    """
    Decorator: require an active user for the endpoint.

    Sets ``g.current_user``; responds 401 when no user resolves.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_current_user() is None:
            return jsonify({"error": "Authentication required. Provide X-User-Id header."}), 401
        return f(*args, **kwargs)

    return decorated


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_auth
        @require_role("MANAGER")
        def list_tasks(): ...

    Role hierarchy: ADMIN > MANAGER > USER > VIEWER
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            allowed = ROLE_HIERARCHY.get(user.role, set())
            if minimum_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user.role, minimum_role, request.path,
                )
                return jsonify({"error": "Insufficient permissions"}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


def require_admin_or_cron(f):
    """
    Decorator: allow an ADMIN user, or a caller presenting the cron secret.

    ``g.cron_caller`` is True when the secret was used.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.cron_caller = False
        if has_valid_cron_secret():
            g.cron_caller = True
            return f(*args, **kwargs)

        user = get_current_user()
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        if user.role != ROLE_ADMIN:
            logger.warning("Access denied: non-admin user %s on %s", user.id, request.path)
            return jsonify({"error": "Insufficient permissions"}), 403
        return f(*args, **kwargs)

    return decorated


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that
    content type, which makes this a lightweight CSRF mitigation.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def init_auth(app):
    """Install the CSRF guard on API routes (health excluded)."""

    @app.before_request
    def _before_request_auth():
        # g outlives a request when the app context is shared (CLI, tests)
        g.pop("current_user", None)
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.method == "OPTIONS":
            return None
        return _check_content_type()

    logger.info("Auth middleware installed")
