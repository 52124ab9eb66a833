"""Subscription endpoints called by the Android app and by Google Play RTDN push.

- GET  /check_premium       — is this purchase token premium for the caller?
- POST /link_subscription   — attach a purchase token to the caller's account
- POST /play_webhook        — Pub/Sub push target for Real-Time Developer Notifications
- GET  /play_webhook        — liveness probe
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from src.auth import bearer_scheme, verify_bearer
from src.db.engine import session_scope
from src.errors import InvalidToken, MissingInput, Unauthenticated
from src.models.notifications import PubSubPush
from src.services.entitlements import check_premium, link_purchase
from src.services.google_play import play_client_ready
from src.services.reconciliation import ReconcileOutcome, reconcile_notification

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


def _purchase_token(body: Any) -> str:
    """``purchaseToken`` from a link body; anything but a non-empty string is missing."""
    token = body.get("purchaseToken") if isinstance(body, dict) else None
    if not isinstance(token, str) or not token:
        raise MissingInput("purchaseToken")
    return token


def _auth_error(exc: Exception, key: str) -> JSONResponse:
    message = "Invalid token" if isinstance(exc, InvalidToken) else "Authorization required"
    return JSONResponse(status_code=401, content={key: False, "message": message})


# ── Entitlement query ─────────────────────────────────────────────────────────

@router.get("/check_premium")
async def check_premium_route(
    token: Optional[str] = None,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
):
    """Return ``{premium, expiryTime?}`` for the caller's purchase token."""
    try:
        if not token:
            raise MissingInput("token")
        uid = await verify_bearer(creds)
        async with session_scope() as session:
            status = await check_premium(token, uid, session=session)
        return status.model_dump(exclude_none=True)
    except MissingInput as e:
        return JSONResponse(status_code=400, content={"premium": False, "message": str(e)})
    except (Unauthenticated, InvalidToken) as e:
        return _auth_error(e, "premium")
    except Exception:
        logger.exception("[check_premium] Error")
        return JSONResponse(status_code=500, content={"premium": False, "message": "Server error"})


# ── Purchase linking ──────────────────────────────────────────────────────────

@router.post("/link_subscription")
async def link_subscription_route(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
):
    """Associate the purchase token with the authenticated Firebase user."""
    try:
        # An unparseable body falls through to the masked 500
        purchase_token = _purchase_token(await request.json())
        uid = await verify_bearer(creds)
        async with session_scope() as session:
            await link_purchase(purchase_token, uid, session=session)
        return {"success": True}
    except MissingInput as e:
        return JSONResponse(status_code=400, content={"success": False, "message": str(e)})
    except (Unauthenticated, InvalidToken) as e:
        return _auth_error(e, "success")
    except Exception:
        logger.exception("[link-subscription] Error")
        return JSONResponse(status_code=500, content={"success": False, "message": "Server error"})


# ── Google RTDN Webhook ──────────────────────────────────────────────────────

@router.post("/play_webhook")
async def play_webhook(request: Request):
    """Handle Google Real-Time Developer Notifications via Cloud Pub/Sub push.

    Always answers 200 once a message is present: a 4xx/5xx makes Pub/Sub
    redeliver the same message until it expires. Only a body without
    ``message.data`` is rejected.
    """
    try:
        body = json.loads(await request.body())
    except ValueError:
        body = None

    push = PubSubPush.parse(body)
    if push is None or not push.has_data:
        logger.warning("[webhook] Invalid Pub/Sub format - missing message.data")
        return JSONResponse(status_code=400, content={"error": "Missing message.data"})

    try:
        outcome = await reconcile_notification(push.data)
    except Exception:
        logger.exception(
            "[webhook] Critical error in RTDN handler (messageId=%s)",
            push.message.message_id if push.message else None,
        )
        return {}

    if outcome is ReconcileOutcome.RECONCILED:
        return {"success": True}
    return {}


@router.get("/play_webhook")
async def play_webhook_status():
    return {
        "status": "ok",
        "message": "Webhook is alive - use POST method for Google Play notifications",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "googleClientReady": play_client_ready(),
    }
