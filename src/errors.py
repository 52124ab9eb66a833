"""Error taxonomy shared by the verifier, billing client, store and handlers.

Handlers translate these into HTTP responses; the webhook path logs them and
acknowledges the push message instead.
"""
from __future__ import annotations


class EntitlementError(Exception):
    """Base class for every error this service raises on purpose."""


# ── Caller-facing ─────────────────────────────────────────────────────────────

class Unauthenticated(EntitlementError):
    """Authorization header missing or not of the form ``Bearer <token>``."""


class InvalidToken(EntitlementError):
    """A bearer token was presented but the identity provider rejected it."""


class MissingInput(EntitlementError):
    """A required request field is absent."""

    def __init__(self, field: str):
        super().__init__(f"Missing {field}")
        self.field = field


# ── Upstream / internal ───────────────────────────────────────────────────────

class IdentityProviderUnavailable(EntitlementError):
    """Firebase Admin could not be initialized or reached."""


class ProviderUnavailable(EntitlementError):
    """Google Play API unreachable, unauthorized or erroring (or client disabled)."""


class PurchaseNotFound(EntitlementError):
    """Google Play does not know this subscriptionId / purchaseToken pair."""


class MalformedResponse(EntitlementError):
    """Google Play answered, but without a usable expiry timestamp."""


class StoreError(EntitlementError):
    """A subscription store operation failed."""


class MalformedNotification(EntitlementError):
    """A push payload could not be decoded into a developer notification."""
