"""Subscription repository — atomic upserts and entitlement lookups keyed by purchase token."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.subscription_tables import SubscriptionRow
from src.errors import StoreError
from src.models.subscription import SubscriptionSnapshot

# Columns a reconciliation may overwrite on conflict. user_id, created_at and
# package_name keep their first-written values.
_BILLING_COLUMNS = (
    "subscription_id",
    "expiry_time_millis",
    "is_active",
    "auto_renewing",
    "payment_state",
    "kind",
    "order_id",
    "linked_purchase_token",
    "country_code",
    "price_currency_code",
    "price_amount_micros",
    "updated_at",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionRepository:
    """Async subscription CRUD backed by SQLAlchemy.

    Writes use ``INSERT ... ON CONFLICT (purchase_token) DO UPDATE`` so that
    concurrent writers for one token converge on a single row without any
    in-process locking.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(SubscriptionRow)
        if dialect == "sqlite":
            return sqlite.insert(SubscriptionRow)
        raise StoreError(f"Unsupported database dialect for upsert: {dialect}")

    async def upsert_snapshot(
        self,
        purchase_token: str,
        subscription_id: str,
        snapshot: SubscriptionSnapshot,
        *,
        is_active: bool,
        package_name: Optional[str] = None,
    ) -> None:
        """Write billing state for a token; never touches user_id."""
        now = _now()
        values = {
            "purchase_token": purchase_token,
            "subscription_id": subscription_id,
            "expiry_time_millis": snapshot.expiry_time_millis,
            "is_active": is_active,
            "auto_renewing": snapshot.auto_renewing if snapshot.auto_renewing is not None else False,
            "payment_state": snapshot.payment_state,
            "kind": snapshot.kind,
            "order_id": snapshot.order_id,
            "linked_purchase_token": snapshot.linked_purchase_token,
            "country_code": snapshot.country_code,
            "price_currency_code": snapshot.price_currency_code,
            "price_amount_micros": snapshot.price_amount_micros,
            "package_name": package_name,
            "created_at": now,
            "updated_at": now,
        }
        stmt = self._insert().values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SubscriptionRow.purchase_token],
            set_={col: stmt.excluded[col] for col in _BILLING_COLUMNS},
        )
        await self._execute(stmt)

    async def link_user(self, purchase_token: str, user_id: str) -> None:
        """Attach a uid to a token, creating a bare row if the token is new."""
        now = _now()
        stmt = self._insert().values(
            purchase_token=purchase_token,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SubscriptionRow.purchase_token],
            set_={"user_id": stmt.excluded.user_id, "updated_at": stmt.excluded.updated_at},
        )
        await self._execute(stmt)

    async def get(self, purchase_token: str) -> Optional[SubscriptionRow]:
        stmt = select(SubscriptionRow).where(SubscriptionRow.purchase_token == purchase_token)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Subscription lookup failed: {e}") from e
        return result.scalar_one_or_none()

    async def find_active(self, purchase_token: str, user_id: str, now_ms: int) -> Optional[SubscriptionRow]:
        """Conjunctive match: token, owner, cached flag and a live expiry."""
        stmt = select(SubscriptionRow).where(
            SubscriptionRow.purchase_token == purchase_token,
            SubscriptionRow.user_id == user_id,
            SubscriptionRow.is_active.is_(True),
            SubscriptionRow.expiry_time_millis > now_ms,
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Subscription lookup failed: {e}") from e
        return result.scalar_one_or_none()

    async def _execute(self, stmt) -> None:
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Subscription upsert failed: {e}") from e
