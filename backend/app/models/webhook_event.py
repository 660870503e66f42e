"""
Webhook event failure model.

WHY: The webhook endpoint acknowledges every verified event with 200, even
when a handler fails, to avoid Stripe retry storms. Without a record those
failures would only exist in logs. Each failure is stored here so operators
can find, replay and mark events as resolved.
"""

from sqlalchemy import Column, String, Text, JSON, DateTime

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin


class WebhookEventFailure(Base, PrimaryKeyMixin, TimestampMixin):
    """Dead-letter entry for a webhook event whose handler raised."""

    __tablename__ = "webhook_event_failures"

    event_id = Column(String(255), nullable=False, index=True, doc="Stripe event ID (evt_xxx)")
    event_type = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    error = Column(Text, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEventFailure(id={self.id}, event_id={self.event_id}, type={self.event_type})>"
