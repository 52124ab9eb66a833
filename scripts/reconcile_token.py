#!/usr/bin/env python3
"""Re-run Google Play reconciliation for one purchase by hand.

Use when a Pub/Sub delivery was lost or acknowledged during an outage: it goes
through the same decode → fetch → upsert path as the webhook.

Usage:
  python scripts/reconcile_token.py <subscriptionId> <purchaseToken>
  python scripts/reconcile_token.py <subscriptionId> <purchaseToken> --create-tables
"""
import argparse
import asyncio
import base64
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def build_envelope(subscription_id: str, purchase_token: str, package_name: str) -> str:
    """Base64 DeveloperNotification, shaped like a real RTDN."""
    notification = {
        "version": "1.0",
        "packageName": package_name,
        "subscriptionNotification": {
            "version": "1.0",
            "notificationType": 2,
            "purchaseToken": purchase_token,
            "subscriptionId": subscription_id,
        },
    }
    return base64.b64encode(json.dumps(notification).encode()).decode()


async def run(subscription_id: str, purchase_token: str, create_tables: bool) -> int:
    from config.settings import settings
    from src.db.engine import dispose_engine, get_engine, session_scope
    from src.db.repository import SubscriptionRepository
    from src.db.tables import Base
    from src.services.reconciliation import ReconcileOutcome, reconcile_notification
    import src.db.subscription_tables  # noqa: F401

    try:
        if create_tables:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        data = build_envelope(subscription_id, purchase_token, settings.PACKAGE_NAME)
        outcome = await reconcile_notification(data)
        print(f"Outcome: {outcome.value}")

        async with session_scope() as session:
            row = await SubscriptionRepository(session).get(purchase_token)
        if row is None:
            print("No stored record for this purchase token")
        else:
            for key, value in row.to_dict().items():
                print(f"  {key:<24} {value}")
    finally:
        await dispose_engine()

    return 0 if outcome is ReconcileOutcome.RECONCILED else 1


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("subscription_id", help="Play product/subscription id")
    parser.add_argument("purchase_token", help="Play purchase token")
    parser.add_argument("--create-tables", action="store_true", help="create missing tables first")
    args = parser.parse_args()

    from src.logging_config import setup_logging
    setup_logging()

    sys.exit(asyncio.run(run(args.subscription_id, args.purchase_token, args.create_tables)))


if __name__ == "__main__":
    main()
