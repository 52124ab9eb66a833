"""Purchase linking and premium checks for authenticated app users."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.repository import SubscriptionRepository
from src.models.subscription import PremiumStatus, millis_to_iso, now_millis
from src.services.reconciliation import redact_token

logger = logging.getLogger(__name__)


async def link_purchase(purchase_token: str, user_id: str, *, session: AsyncSession) -> None:
    """Claim a purchase token for a Firebase uid.

    Creates a bare row when no RTDN has arrived yet for this token; billing
    columns are left for reconciliation to fill in.
    """
    await SubscriptionRepository(session).link_user(purchase_token, user_id)
    logger.info("[link-subscription] Linked purchaseToken %s to user %s", redact_token(purchase_token), user_id)


async def check_premium(
    purchase_token: str,
    user_id: str,
    *,
    session: AsyncSession,
    now_ms: Optional[int] = None,
) -> PremiumStatus:
    """Premium only if this exact token belongs to this user and is live.

    The match is on (token, user) rather than "any active subscription for the
    user", so a user with several purchase tokens is checked per token.
    """
    if now_ms is None:
        now_ms = now_millis()
    row = await SubscriptionRepository(session).find_active(purchase_token, user_id, now_ms)
    if row is None:
        return PremiumStatus(premium=False)
    return PremiumStatus(premium=True, expiryTime=millis_to_iso(row.expiry_time_millis))
