"""Subscription data models — Google Play purchase snapshots and entitlement answers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.errors import MalformedResponse


def millis_to_iso(ms: int) -> str:
    """Epoch millis → ``2026-01-31T12:00:00.000Z``.

    Values outside datetime's range clamp to year 1 or year 9999.
    """
    try:
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        dt = datetime.max if ms > 0 else datetime.min
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class SubscriptionSnapshot(BaseModel):
    """Authoritative subscription state from ``purchases.subscriptions.get``.

    Mirrors the v1 ``SubscriptionPurchase`` resource. Only ``expiryTimeMillis``
    is required; everything else is advisory metadata copied into the store.
    See: https://developers.google.com/android-publisher/api-ref/rest/v3/purchases.subscriptions
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    expiry_time_millis: int = Field(alias="expiryTimeMillis")
    start_time_millis: Optional[int] = Field(default=None, alias="startTimeMillis")
    auto_renewing: Optional[bool] = Field(default=None, alias="autoRenewing")
    payment_state: Optional[int] = Field(default=None, alias="paymentState")
    cancel_reason: Optional[int] = Field(default=None, alias="cancelReason")
    kind: Optional[str] = None
    order_id: Optional[str] = Field(default=None, alias="orderId")
    linked_purchase_token: Optional[str] = Field(default=None, alias="linkedPurchaseToken")
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    price_currency_code: Optional[str] = Field(default=None, alias="priceCurrencyCode")
    # int64 serialized as a string by the API; kept verbatim
    price_amount_micros: Optional[str] = Field(default=None, alias="priceAmountMicros")

    @field_validator("price_amount_micros", mode="before")
    @classmethod
    def _micros_as_str(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @classmethod
    def from_api(cls, payload: Any) -> "SubscriptionSnapshot":
        """Validate a raw API response or raise MalformedResponse."""
        if not isinstance(payload, dict):
            raise MalformedResponse("Subscription response is not a JSON object")
        if payload.get("expiryTimeMillis") in (None, ""):
            raise MalformedResponse("Subscription response has no expiryTimeMillis")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponse(f"Invalid subscription response: {e.error_count()} error(s)") from e

    def is_active_at(self, now_ms: int) -> bool:
        return self.expiry_time_millis > now_ms


class PremiumStatus(BaseModel):
    """Answer to ``GET /check_premium``."""
    premium: bool
    expiryTime: Optional[str] = None
