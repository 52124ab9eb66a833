"""Startup validation — report misconfigurations before the app serves traffic.

Missing credentials disable the component that needs them; they never stop
the process, so the webhook keeps acknowledging Pub/Sub deliveries.
"""
from __future__ import annotations

import logging

from config.settings import settings

logger = logging.getLogger(__name__)


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good)."""
    warnings: list[str] = []
    is_prod = settings.DATABASE_URL and "sqlite" not in settings.DATABASE_URL

    if not settings.DATABASE_URL:
        warnings.append("DATABASE_URL not set — subscription store disabled")

    if not (settings.FIREBASE_SERVICE_ACCOUNT or settings.FIREBASE_SERVICE_ACCOUNT_FILE):
        warnings.append("FIREBASE_SERVICE_ACCOUNT not set — check_premium and link_subscription will fail")

    if not (settings.GOOGLE_SERVICE_ACCOUNT or settings.GOOGLE_SERVICE_ACCOUNT_FILE):
        warnings.append("GOOGLE_SERVICE_ACCOUNT not set — Play notifications will be acknowledged but not processed")

    if not settings.PACKAGE_NAME:
        warnings.append("PACKAGE_NAME not set — Google Play lookups cannot be addressed")

    # CORS should not be * in production
    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to * — restrict in production")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
