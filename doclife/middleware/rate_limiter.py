"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in doclife/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from doclife.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Task / sweep triggers:  20/minute  (each call may run a full sweep)
        - Document endpoints:     120/minute (lock heartbeats, workflow actions)
        - Notifications:          200/minute (polled by the UI)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("tasks", "alerts"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("20/minute")(bp)

    for bp_name in ("locks", "workflows"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("notifications")
    if bp:
        limiter.limit("200/minute")(bp)

    app.logger.info(
        "Rate limiter configured: triggers: 20/min, documents: 120/min, notifications: 200/min"
    )
