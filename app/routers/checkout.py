import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.core.dependencies import get_stripe_service
from app.core.exceptions import BillingProviderError
from app.schemas.subscription import CheckoutResponse, CreateCheckoutRequest
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    request: Request,
    checkout_request: Optional[CreateCheckoutRequest] = None,
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """Create a Stripe subscription checkout session for a wallet"""
    # No JSON body means no wallet
    wallet_address = ((checkout_request and checkout_request.wallet_address) or "").strip()
    if not wallet_address:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Wallet address is required"}
        )

    base_url = str(request.base_url).rstrip("/")
    try:
        session_id = await stripe_service.create_checkout_session(
            wallet_address=wallet_address,
            success_url=f"{base_url}/success.html?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/cancel.html"
        )
    except BillingProviderError as e:
        logger.error("❌ Checkout session creation failed: %s", e.detail)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error"}
        )

    return CheckoutResponse(session_id=session_id)
