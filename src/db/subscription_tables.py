"""Subscription table — mirrored Google Play subscription state, one row per purchase token."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String

from src.db.tables import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionRow(Base):
    """Subscription state keyed by Google Play purchase token.

    Rows are written by two independent paths: the RTDN webhook fills the
    billing columns, the link endpoint fills ``user_id``. Either may arrive
    first, so every column besides the key is nullable.
    """
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    purchase_token = Column(String(500), nullable=False, unique=True, index=True)
    subscription_id = Column(String(255), nullable=True)

    # Firebase uid; NULL until the app links the purchase to an account
    user_id = Column(String(128), nullable=True, index=True)

    # Snapshot of expiry_time_millis > now at last reconciliation
    expiry_time_millis = Column(BigInteger, nullable=True)
    is_active = Column(Boolean, nullable=True)

    # Passthrough billing metadata (advisory only)
    auto_renewing = Column(Boolean, nullable=True)
    payment_state = Column(Integer, nullable=True)
    kind = Column(String(100), nullable=True)
    order_id = Column(String(255), nullable=True)
    linked_purchase_token = Column(String(500), nullable=True)
    country_code = Column(String(8), nullable=True)
    price_currency_code = Column(String(8), nullable=True)
    price_amount_micros = Column(String(32), nullable=True)

    # Set once, on the first reconciliation insert
    package_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}
