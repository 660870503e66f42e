"""
Webhook event failure DAO.

WHY: Failed webhook handlers are recorded instead of retried by Stripe; this
DAO is the write path for those records and the read path for operators.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.webhook_event import WebhookEventFailure


class WebhookEventFailureDAO(BaseDAO[WebhookEventFailure]):
    """Data Access Object for WebhookEventFailure model."""

    def __init__(self, session: AsyncSession):
        super().__init__(WebhookEventFailure, session)

    async def record(
        self,
        event_id: str,
        event_type: str,
        payload: Dict[str, Any],
        error: str,
    ) -> WebhookEventFailure:
        """Store a failed event for later review or replay."""
        return await self.create(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            error=error,
        )

    async def list_unresolved(self, limit: int = 100) -> List[WebhookEventFailure]:
        """List failures not yet marked resolved, oldest first."""
        result = await self.session.execute(
            select(WebhookEventFailure)
            .where(WebhookEventFailure.resolved_at.is_(None))
            .order_by(WebhookEventFailure.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_resolved(self, failure_id: int) -> Optional[WebhookEventFailure]:
        """Mark a failure resolved after it was replayed or handled manually."""
        result = await self.session.execute(
            update(WebhookEventFailure)
            .where(
                WebhookEventFailure.id == failure_id,
                WebhookEventFailure.resolved_at.is_(None),
            )
            .values(resolved_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get_by_id(failure_id)
