"""
Stripe webhook endpoint.

WHAT: Receives Stripe events and hands them to the dispatcher.

WHY: Billing state reaches this service through webhooks. The endpoint is
unauthenticated; the Stripe signature is the only credential.

HOW:
- Missing or invalid signature -> 400, nothing is read or written
- Verified event -> dispatched and committed; the response is 200 even
  when the handler failed (the failure is stored in webhook_event_failures)
- Invite emails queued by the handler go out after the commit
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.services.stripe_service import get_stripe_service
from app.services.webhook_service import WebhookService


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Stripe webhook",
    description="Handle Stripe webhook events (no auth required, signature verified)",
)
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Handle Stripe webhook events.

    Security: Uses signature verification to validate the webhook came from
    Stripe (OWASP A02).

    Raises:
        WebhookSignatureError: If signature verification fails (400)
    """
    stripe_service = get_stripe_service()

    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    event = stripe_service.verify_webhook_signature(payload, signature)

    service = WebhookService(db, stripe_service=stripe_service)
    await service.process(event)

    # Invite codes are emailed only once they are durably stored
    await db.commit()
    await service.send_queued_emails()

    return {"received": True}
