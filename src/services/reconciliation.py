"""
RTDN reconciliation
---
Turns one Pub/Sub push message into at most one subscription upsert.

Pub/Sub delivers at least once and redelivers anything not acknowledged with
a 2xx, so every processing failure here ends in an acknowledgement. Replays
are harmless: the upsert is keyed by purchase token and converges to the
provider's current state.
"""
from __future__ import annotations

import enum
import logging
from typing import Optional

from config.settings import settings
from src.db.engine import session_scope
from src.db.repository import SubscriptionRepository
from src.errors import (
    MalformedNotification,
    MalformedResponse,
    ProviderUnavailable,
    PurchaseNotFound,
    StoreError,
)
from src.models.notifications import decode_notification
from src.models.subscription import millis_to_iso, now_millis
from src.services.google_play import get_play_client

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    RECONCILED = "reconciled"
    DECODE_FAILED = "decode_failed"
    TEST = "test_notification"
    IGNORED = "ignored"
    MISSING_FIELDS = "missing_fields"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_REJECTED = "provider_rejected"
    STORE_FAILED = "store_failed"


def redact_token(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    return token[:12] + "..." if len(token) > 12 else token


async def reconcile_notification(data_b64: str, *, now_ms: Optional[int] = None) -> ReconcileOutcome:
    """Decode → classify → extract → fetch from Google Play → upsert.

    Never raises for processing failures; the outcome says what happened.
    """
    try:
        notification = decode_notification(data_b64)
    except MalformedNotification as e:
        logger.error("[webhook] Failed to decode/parse Pub/Sub payload: %s", e)
        return ReconcileOutcome.DECODE_FAILED

    if notification.package_name and notification.package_name != settings.PACKAGE_NAME:
        logger.warning("[webhook] RTDN for wrong package: %s", notification.package_name)
        return ReconcileOutcome.IGNORED

    if notification.test_notification is not None:
        logger.info("[webhook] Test notification received (version %s)", notification.version)
        return ReconcileOutcome.TEST

    sub = notification.subscription_notification
    if sub is None:
        logger.info("[webhook] Not a subscription notification event")
        return ReconcileOutcome.IGNORED

    purchase_token, subscription_id = sub.purchase_token, sub.subscription_id
    if not purchase_token or not subscription_id:
        logger.warning("[webhook] Missing purchaseToken or subscriptionId")
        return ReconcileOutcome.MISSING_FIELDS

    logger.info(
        "[webhook] Processing %s → subscriptionId: %s | purchaseToken: %s",
        sub.type_name, subscription_id, redact_token(purchase_token),
    )
    return await reconcile_purchase(subscription_id, purchase_token, now_ms=now_ms)


async def reconcile_purchase(
    subscription_id: str, purchase_token: str, *, now_ms: Optional[int] = None
) -> ReconcileOutcome:
    """Fetch authoritative state for one purchase and write it to the store."""
    try:
        client = get_play_client()
        snapshot = await client.fetch_subscription(subscription_id, purchase_token)
    except ProviderUnavailable as e:
        logger.error("[webhook] Google Play unavailable for %s: %s", redact_token(purchase_token), e)
        return ReconcileOutcome.PROVIDER_UNAVAILABLE
    except (PurchaseNotFound, MalformedResponse) as e:
        logger.error("[webhook] Invalid/empty purchase data from Google Play: %s", e)
        return ReconcileOutcome.PROVIDER_REJECTED

    if now_ms is None:
        now_ms = now_millis()
    is_active = snapshot.is_active_at(now_ms)

    try:
        async with session_scope() as session:
            await SubscriptionRepository(session).upsert_snapshot(
                purchase_token,
                subscription_id,
                snapshot,
                is_active=is_active,
                package_name=client.package_name,
            )
    except StoreError as e:
        logger.error("[webhook] Store write failed for %s: %s", redact_token(purchase_token), e)
        return ReconcileOutcome.STORE_FAILED

    logger.info(
        "[webhook] Subscription processed → %s • active: %s • expires: %s",
        subscription_id, is_active, millis_to_iso(snapshot.expiry_time_millis),
    )
    return ReconcileOutcome.RECONCILED
