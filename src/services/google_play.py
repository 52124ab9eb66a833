"""
Google Play Developer API client
---
Fetches authoritative subscription state for a (subscriptionId, purchaseToken)
pair via ``purchases.subscriptions.get`` (androidpublisher v3).

Requires a Google Cloud service account with Play Developer API access,
provided inline (GOOGLE_SERVICE_ACCOUNT) or as a file (GOOGLE_SERVICE_ACCOUNT_FILE).
See: https://developers.google.com/android-publisher/api-ref/rest/v3/purchases.subscriptions/get
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Optional
from urllib.parse import quote

import httpx
import jwt as pyjwt  # PyJWT library

from config.settings import settings
from src.errors import MalformedResponse, ProviderUnavailable, PurchaseNotFound
from src.models.subscription import SubscriptionSnapshot

logger = logging.getLogger(__name__)

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
ANDROID_PUBLISHER_BASE = "https://androidpublisher.googleapis.com/androidpublisher/v3"

# Refresh the access token this many seconds before Google says it expires
_TOKEN_EXPIRY_MARGIN = 60


def _load_service_account_key() -> dict | None:
    """Load service account key from env (inline JSON) or file path."""
    raw = settings.GOOGLE_SERVICE_ACCOUNT
    if raw:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error("GOOGLE_SERVICE_ACCOUNT is not valid JSON")
            return None

    path = settings.GOOGLE_SERVICE_ACCOUNT_FILE
    if path and os.path.exists(path):
        with open(path) as f:
            try:
                return json.load(f)
            except json.JSONDecodeError:
                logger.error("GOOGLE_SERVICE_ACCOUNT_FILE %s is not valid JSON", path)
                return None

    return None


class GooglePlayClient:
    """Service-account authenticated caller of the Play Developer API."""

    def __init__(self, client_email: str, private_key: str, package_name: str, timeout: float = 15):
        self.client_email = client_email
        self.private_key = private_key
        self.package_name = package_name
        self.timeout = timeout
        self._access_token = ""
        self._expires_at = 0.0

    @classmethod
    def from_service_account(cls, info: dict, package_name: str, timeout: float = 15) -> "GooglePlayClient":
        if not isinstance(info, dict):
            raise ValueError(f"service account must be a JSON object, got {type(info).__name__}")
        client_email = info.get("client_email")
        private_key = info.get("private_key")
        if not client_email or not private_key or not isinstance(private_key, str):
            raise ValueError("service account is missing client_email or private_key")
        return cls(
            client_email=client_email,
            private_key=private_key.replace("\\n", "\n"),
            package_name=package_name,
            timeout=timeout,
        )

    def check_signing_key(self) -> None:
        """Sign a throwaway assertion so an unusable key is caught at startup.

        Raises ValueError if the private key cannot produce an RS256 signature.
        """
        try:
            pyjwt.encode({"iss": self.client_email}, self.private_key, algorithm="RS256")
        except (ValueError, TypeError, NotImplementedError, pyjwt.PyJWTError) as e:
            raise ValueError(f"private key cannot sign RS256: {e}") from e

    # ── Google Auth (Service Account JWT → Access Token) ──────────────────────

    async def _get_access_token(self) -> str:
        """Get a Google OAuth2 access token using service account credentials.

        Uses JWT assertion grant per:
        https://developers.google.com/identity/protocols/oauth2/service-account
        """
        now = time.time()
        if self._access_token and self._expires_at > now + _TOKEN_EXPIRY_MARGIN:
            return self._access_token

        iat = int(now)
        payload = {
            "iss": self.client_email,
            "scope": ANDROID_PUBLISHER_SCOPE,
            "aud": GOOGLE_TOKEN_URL,
            "iat": iat,
            "exp": iat + 3600,
        }
        try:
            signed_jwt = pyjwt.encode(payload, self.private_key, algorithm="RS256")
        except (ValueError, TypeError, NotImplementedError, pyjwt.PyJWTError) as e:
            raise ProviderUnavailable(f"Cannot sign service account assertion: {e}") from e

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                        "assertion": signed_jwt,
                    },
                )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Google token exchange unreachable: {e}") from e

        if resp.status_code != 200:
            logger.error("Google token exchange failed: %s %s", resp.status_code, resp.text[:300])
            raise ProviderUnavailable("Failed to authenticate with Google")

        try:
            token_data = resp.json()
        except ValueError:
            token_data = None
        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise ProviderUnavailable("Google token exchange returned no access_token")
        self._access_token = token_data["access_token"]
        self._expires_at = now + token_data.get("expires_in", 3600)
        return self._access_token

    def _clear_token(self) -> None:
        self._access_token = ""
        self._expires_at = 0.0

    # ── Google Play Developer API ─────────────────────────────────────────────

    def subscription_url(self, subscription_id: str, purchase_token: str) -> str:
        return (
            f"{ANDROID_PUBLISHER_BASE}/applications/{quote(self.package_name, safe='')}"
            f"/purchases/subscriptions/{quote(subscription_id, safe='')}"
            f"/tokens/{quote(purchase_token, safe='')}"
        )

    async def _get(self, url: str) -> httpx.Response:
        token = await self._get_access_token()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Google Play API unreachable: {e}") from e

    async def fetch_subscription(self, subscription_id: str, purchase_token: str) -> SubscriptionSnapshot:
        """Fetch the current SubscriptionPurchase for a token.

        Raises PurchaseNotFound, MalformedResponse or ProviderUnavailable.
        """
        url = self.subscription_url(subscription_id, purchase_token)
        resp = await self._get(url)

        if resp.status_code == 401:
            # Token revoked or expired early, clear cache and retry once
            self._clear_token()
            resp = await self._get(url)

        if resp.status_code in (404, 410):
            raise PurchaseNotFound(f"Google Play has no subscription {subscription_id} for this token")
        if resp.status_code != 200:
            logger.error("Google Play API error %s: %s", resp.status_code, resp.text[:300])
            raise ProviderUnavailable(f"Google Play API returned {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise MalformedResponse("Google Play API returned non-JSON body") from e
        return SubscriptionSnapshot.from_api(payload)


# ── Process-wide client (fail-static) ─────────────────────────────────────────

_client: Optional[GooglePlayClient] = None
_client_error: Optional[str] = None
_client_lock = threading.Lock()


def get_play_client() -> GooglePlayClient:
    """Return the shared client, initializing it on first use.

    A failed initialization is remembered: the client stays disabled for the
    rest of the process and every call raises ProviderUnavailable.
    """
    global _client, _client_error

    if _client is not None:
        return _client
    if _client_error is not None:
        raise ProviderUnavailable(_client_error)

    with _client_lock:
        if _client is None and _client_error is None:
            info = _load_service_account_key()
            if not info:
                _client_error = "Google service account not configured"
            else:
                try:
                    client = GooglePlayClient.from_service_account(
                        info,
                        package_name=settings.PACKAGE_NAME,
                        timeout=settings.GOOGLE_API_TIMEOUT_SECONDS,
                    )
                    client.check_signing_key()
                    _client = client
                except ValueError as e:
                    _client_error = f"Invalid Google service account: {e}"

            if _client is not None:
                logger.info("Google Play Publisher client initialized for %s", settings.PACKAGE_NAME)
            else:
                logger.error("Google Play Publisher client disabled: %s", _client_error)

    if _client is None:
        raise ProviderUnavailable(_client_error)
    return _client


def play_client_ready() -> bool:
    try:
        get_play_client()
    except ProviderUnavailable:
        return False
    return True


def reset_play_client() -> None:
    """Forget the cached client (and any remembered failure)."""
    global _client, _client_error
    with _client_lock:
        _client = None
        _client_error = None
