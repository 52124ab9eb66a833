"""Google Play Real-Time Developer Notification (RTDN) models.

Google publishes RTDNs to Cloud Pub/Sub; a push subscription POSTs them to us as::

    {"message": {"data": "<base64 DeveloperNotification JSON>", "messageId": "..."},
     "subscription": "projects/.../subscriptions/..."}

See: https://developer.android.com/google/play/billing/rtdn-reference
"""
from __future__ import annotations

import base64
import binascii
import json
from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.errors import MalformedNotification


class NotificationType(IntEnum):
    SUBSCRIPTION_RECOVERED = 1
    SUBSCRIPTION_RENEWED = 2
    SUBSCRIPTION_CANCELED = 3
    SUBSCRIPTION_PURCHASED = 4
    SUBSCRIPTION_ON_HOLD = 5
    SUBSCRIPTION_IN_GRACE_PERIOD = 6
    SUBSCRIPTION_RESTARTED = 7
    SUBSCRIPTION_PRICE_CHANGE_CONFIRMED = 8
    SUBSCRIPTION_DEFERRED = 9
    SUBSCRIPTION_PAUSED = 10
    SUBSCRIPTION_PAUSE_SCHEDULE_CHANGED = 11
    SUBSCRIPTION_REVOKED = 12
    SUBSCRIPTION_EXPIRED = 13
    SUBSCRIPTION_PENDING_PURCHASE_CANCELED = 20

    @classmethod
    def describe(cls, value: Optional[int]) -> str:
        try:
            return cls(value).name
        except (ValueError, TypeError):
            return f"UNKNOWN({value})"


# ── Pub/Sub push envelope ─────────────────────────────────────────────────────

class PubSubMessage(BaseModel):
    """Push message. Only ``data`` is acted on; the rest is advisory and untyped."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    data: Any = None
    message_id: Any = Field(default=None, alias="messageId")
    publish_time: Any = Field(default=None, alias="publishTime")
    attributes: Any = None


class PubSubPush(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: Optional[PubSubMessage] = None
    subscription: Any = None

    @classmethod
    def parse(cls, body: Any) -> Optional["PubSubPush"]:
        """Return the envelope, or None when it or its ``message`` is not an object."""
        if not isinstance(body, dict):
            return None
        try:
            return cls.model_validate(body)
        except ValidationError:
            return None

    @property
    def data(self) -> Any:
        return self.message.data if self.message else None

    @property
    def has_data(self) -> bool:
        return self.data is not None and self.data != ""


# ── DeveloperNotification payload ─────────────────────────────────────────────

class SubscriptionNotification(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    version: Optional[str] = None
    notification_type: Optional[int] = Field(default=None, alias="notificationType")
    purchase_token: Optional[str] = Field(default=None, alias="purchaseToken")
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")

    @property
    def type_name(self) -> str:
        return NotificationType.describe(self.notification_type)


class DeveloperNotification(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    version: Optional[str] = None
    package_name: Optional[str] = Field(default=None, alias="packageName")
    event_time_millis: Optional[str] = Field(default=None, alias="eventTimeMillis")
    subscription_notification: Optional[SubscriptionNotification] = Field(
        default=None, alias="subscriptionNotification"
    )
    one_time_product_notification: Optional[dict] = Field(default=None, alias="oneTimeProductNotification")
    voided_purchase_notification: Optional[dict] = Field(default=None, alias="voidedPurchaseNotification")
    test_notification: Optional[dict] = Field(default=None, alias="testNotification")


def decode_notification(data_b64: str) -> DeveloperNotification:
    """base64 → UTF-8 → JSON object → DeveloperNotification.

    Raises MalformedNotification on any step failing.
    """
    if not isinstance(data_b64, str):
        raise MalformedNotification(f"Push data is {type(data_b64).__name__}, not a base64 string")
    try:
        raw = base64.b64decode(data_b64, validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        # UnicodeDecodeError and JSONDecodeError are ValueErrors
        raise MalformedNotification(f"Undecodable push payload: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedNotification("Push payload is not a JSON object")

    try:
        return DeveloperNotification.model_validate(payload)
    except ValidationError as e:
        raise MalformedNotification(f"Unrecognized notification shape: {e.error_count()} error(s)") from e
