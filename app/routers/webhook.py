import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.dependencies import get_event_verifier, get_reconciliation_service
from app.core.exceptions import ReconciliationError
from app.schemas.subscription import WebhookAck
from app.services.event_verifier import EventVerifier
from app.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe-webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    verifier: EventVerifier = Depends(get_event_verifier),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service)
):
    """
    Receive Stripe webhook events.
    The raw body is verified before parsing; reconciliation failures return 500
    so Stripe redelivers the event later.
    """
    payload = await request.body()
    verification = verifier.verify(payload, request.headers.get("stripe-signature"))
    if not verification.ok:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=verification.detail or "Webhook signature verification failed"
        )

    event = verification.event
    try:
        result = await reconciliation.handle_event(event)
    except ReconciliationError as e:
        logger.error("❌ Failed to reconcile %s event %s: %s", event.type, event.id, e.detail)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )

    logger.info("Event %s (%s) reconciled: %s", event.id, event.type, result.outcome.value)
    return WebhookAck(received=True)
