"""
Subscription Data Access Object (DAO).

WHAT: DAO for the local mirror of Stripe subscriptions.

WHY: Webhooks are delivered at least once and in no guaranteed order, so
every write here is either an upsert keyed by the Stripe subscription id or
a guarded UPDATE. Replaying the same event therefore converges on one row.

HOW: Extends BaseDAO with:
- upsert via INSERT ... ON CONFLICT DO UPDATE (PostgreSQL in production,
  SQLite in tests; both dialects ship an `insert` with that clause)
- status-only updates for invoice/deletion events
- conditional owner linking for deferred identity resolution
- aggregate counts for the metrics rollup
"""

from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus


# Columns an upsert may leave untouched when the incoming value is unknown.
# WHY: A later event without an email must not unlink an owner resolved earlier.
_PRESERVE_WHEN_NULL = ("user_id", "stripe_checkout_session_id")


class SubscriptionDAO(BaseDAO[Subscription]):
    """
    Data Access Object for Subscription model.

    WHAT: Handles all database operations for subscriptions.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Subscription, session)

    def _insert(self):
        """Return the dialect-specific INSERT construct supporting ON CONFLICT."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Subscription)
        if dialect == "sqlite":
            return sqlite.insert(Subscription)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        """
        Get subscription by Stripe subscription ID.

        WHY: Every webhook and admin action addresses subscriptions by their
        Stripe id. populate_existing makes sure rows changed by bulk UPDATEs
        earlier in the session are re-read.

        Args:
            stripe_subscription_id: Stripe subscription ID (sub_xxx)

        Returns:
            Subscription if found, None otherwise
        """
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_checkout_session_id(self, session_id: str) -> Optional[Subscription]:
        """Get the subscription created by a checkout session."""
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.stripe_checkout_session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert(self, values: Dict[str, Any]) -> Subscription:
        """
        Insert or update a subscription keyed by stripe_subscription_id.

        WHAT: One statement that either creates the row or overwrites its
        processor-owned fields.

        WHY: Two deliveries of the same event racing each other both hit the
        unique index; ON CONFLICT turns the loser into an update rather than
        an error or a duplicate.

        HOW: user_id and stripe_checkout_session_id are only written when
        the caller supplies a value, so a NULL never clears a known owner.

        Args:
            values: Column values; must include stripe_subscription_id

        Returns:
            The current row after the upsert
        """
        now = datetime.utcnow()
        insert_values = {k: v for k, v in values.items() if v is not None or k not in _PRESERVE_WHEN_NULL}
        insert_values.setdefault("created_at", now)
        insert_values["updated_at"] = now

        stmt = self._insert().values(**insert_values)
        update_columns = {
            key: getattr(stmt.excluded, key)
            for key in insert_values
            if key not in ("stripe_subscription_id", "created_at")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.stripe_subscription_id],
            set_=update_columns,
        )
        await self.session.execute(stmt)

        return await self.get_by_stripe_subscription_id(values["stripe_subscription_id"])

    async def update_status(
        self,
        stripe_subscription_id: str,
        status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        """
        Status-only update used by invoice and deletion events.

        WHY: Idempotent: applying the same status twice leaves the same row.

        Returns:
            Updated Subscription or None if the id is unknown locally
        """
        result = await self.session.execute(
            update(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .values(status=status, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get_by_stripe_subscription_id(stripe_subscription_id)

    async def mirror_admin_change(
        self,
        subscription_id: int,
        **values: Any,
    ) -> Optional[Subscription]:
        """
        Write fields changed by an admin action after Stripe accepted it.

        Args:
            subscription_id: Local primary key
            **values: Columns to write (status, plan)
        """
        values["updated_at"] = datetime.utcnow()
        return await self.update(subscription_id, **values)

    async def link_owner_by_checkout_session(self, session_id: str, user_id: int) -> bool:
        """
        Attach an owner to the unlinked subscription of a checkout session.

        WHY: Guarded on `user_id IS NULL` so a second call (or a concurrent
        one) cannot steal an already-linked subscription; it simply reports
        that nothing was linked.

        Returns:
            True if this call linked the subscription
        """
        result = await self.session.execute(
            update(Subscription)
            .where(
                Subscription.stripe_checkout_session_id == session_id,
                Subscription.user_id.is_(None),
            )
            .values(user_id=user_id, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_user_ids(self, user_ids: List[int]) -> List[Subscription]:
        """Subscriptions owned by any of the given profiles, newest first."""
        if not user_ids:
            return []
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.user_id.in_(user_ids))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        return list(result.scalars().all())

    # ========================================================================
    # Metrics queries
    # ========================================================================

    async def count_by_status(
        self,
        status: SubscriptionStatus,
        plan: Optional[SubscriptionPlan] = None,
    ) -> int:
        """Count subscriptions in a status, optionally for one plan."""
        filters: Dict[str, Any] = {"status": status}
        if plan is not None:
            filters["plan"] = plan
        return await self.count(**filters)

    async def count_canceled_since(self, since: datetime) -> int:
        """Count subscriptions whose last change was a cancellation after `since`."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.CANCELED,
                Subscription.updated_at >= since,
            )
        )
        return result.scalar_one()
