"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in app/__init__.py with no default limits; this module applies
limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

# Terminals trigger one consolidation per FINISH; batches come from back-office tools
WRITE_LIMIT = "120/minute"
READ_LIMIT = "300/minute"


def _limit_for_request() -> str:
    if flask_request.method in ("GET", "HEAD", "OPTIONS"):
        return READ_LIMIT
    return WRITE_LIMIT


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Time tracking writes: 120/minute (consolidation, lifecycle changes)
        - Time tracking reads:  300/minute (record listings, verification)
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("time_tracking")
    if bp:
        limiter.limit(_limit_for_request)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: time tracking write=%s read=%s", WRITE_LIMIT, READ_LIMIT
    )
