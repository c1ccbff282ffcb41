"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
CRON_LIMIT = "30/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Unit actions:      60/minute  (evidence, decisions, escalations)
        - Attention queue:   200/minute (GET — generous for SPA polling)
        - Cron triggers:     30/minute  (an external scheduler, minutes apart)
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("units")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("attention")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("cron")
    if bp:
        limiter.limit(CRON_LIMIT)(bp)

    # Health check is exempt
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — units: %s, attention: %s, cron: %s",
        WRITE_LIMIT, READ_LIMIT, CRON_LIMIT,
    )
