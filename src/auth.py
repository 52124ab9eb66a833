"""Firebase ID token verification — turns a bearer header into a Firebase uid."""
from __future__ import annotations

import json
import logging
import os
import threading
from typing import Optional

import firebase_admin
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions
from starlette.concurrency import run_in_threadpool

from config.settings import settings
from src.errors import IdentityProviderUnavailable, InvalidToken, Unauthenticated

logger = logging.getLogger(__name__)

# auto_error=False: a missing or non-Bearer header yields None and the route
# decides the response shape.
bearer_scheme = HTTPBearer(auto_error=False)

FIREBASE_APP_NAME = "entitlements"

_firebase_app: Optional[firebase_admin.App] = None
_firebase_error: Optional[str] = None
_firebase_lock = threading.Lock()


# ---- Firebase Admin initialization ----

def _load_firebase_service_account() -> dict:
    """Service account from env (inline JSON) or key file path."""
    raw = settings.FIREBASE_SERVICE_ACCOUNT
    if not raw and settings.FIREBASE_SERVICE_ACCOUNT_FILE:
        if not os.path.exists(settings.FIREBASE_SERVICE_ACCOUNT_FILE):
            raise IdentityProviderUnavailable(
                f"Firebase service account not found: {settings.FIREBASE_SERVICE_ACCOUNT_FILE}"
            )
        with open(settings.FIREBASE_SERVICE_ACCOUNT_FILE) as f:
            raw = f.read()
    if not raw:
        raise IdentityProviderUnavailable("FIREBASE_SERVICE_ACCOUNT not set")

    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        raise IdentityProviderUnavailable("FIREBASE_SERVICE_ACCOUNT is not valid JSON") from e
    if not isinstance(info, dict) or not info.get("private_key") or not info.get("client_email"):
        raise IdentityProviderUnavailable("FIREBASE_SERVICE_ACCOUNT lacks client_email/private_key")

    # Keys pasted into env vars usually carry literal "\n" sequences
    info["private_key"] = info["private_key"].replace("\\n", "\n")
    return info


def get_firebase_app() -> firebase_admin.App:
    """Get or initialize the Firebase Admin app (once per process)."""
    global _firebase_app, _firebase_error

    if _firebase_app is not None:
        return _firebase_app
    if _firebase_error is not None:
        raise IdentityProviderUnavailable(_firebase_error)

    with _firebase_lock:
        if _firebase_app is not None:
            return _firebase_app
        if _firebase_error is not None:
            raise IdentityProviderUnavailable(_firebase_error)

        try:
            # Another component of the process may already own this app
            _firebase_app = firebase_admin.get_app(FIREBASE_APP_NAME)
            return _firebase_app
        except ValueError:
            pass

        try:
            cred = credentials.Certificate(_load_firebase_service_account())
            _firebase_app = firebase_admin.initialize_app(cred, name=FIREBASE_APP_NAME)
        except IdentityProviderUnavailable as e:
            _firebase_error = str(e)
            logger.error("Firebase Admin disabled: %s", e)
            raise
        except (ValueError, IOError) as e:
            _firebase_error = f"Firebase Admin initialization failed: {e}"
            logger.error(_firebase_error)
            raise IdentityProviderUnavailable(_firebase_error) from e

        logger.info("Firebase Admin initialized")
        return _firebase_app


def firebase_ready() -> bool:
    try:
        get_firebase_app()
    except IdentityProviderUnavailable:
        return False
    return True


def reset_firebase_app() -> None:
    """Forget the cached app (and any remembered failure). Tests only."""
    global _firebase_app, _firebase_error
    with _firebase_lock:
        if _firebase_app is not None:
            firebase_admin.delete_app(_firebase_app)
        _firebase_app = None
        _firebase_error = None


# ---- Verification ----

def extract_bearer_token(creds: Optional[HTTPAuthorizationCredentials]) -> str:
    if creds is None or not creds.credentials:
        raise Unauthenticated("Authorization required")
    return creds.credentials


async def verify_id_token(id_token: str) -> str:
    """Validate a Firebase ID token against Google and return its uid.

    Every call goes to firebase_admin; nothing is cached here.
    """
    app = get_firebase_app()
    try:
        decoded = await run_in_threadpool(firebase_auth.verify_id_token, id_token, app)
    except firebase_auth.CertificateFetchError as e:
        raise IdentityProviderUnavailable(f"Cannot fetch Firebase signing certificates: {e}") from e
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        # InvalidIdTokenError, ExpiredIdTokenError, RevokedIdTokenError,
        # UserDisabledError, and ValueError for unparseable input
        raise InvalidToken(str(e)) from e

    uid = decoded.get("uid") if isinstance(decoded, dict) else None
    if not uid:
        raise InvalidToken("ID token has no uid")
    return uid


async def verify_bearer(creds: Optional[HTTPAuthorizationCredentials]) -> str:
    """``Authorization: Bearer <idToken>`` → Firebase uid."""
    return await verify_id_token(extract_bearer_token(creds))
