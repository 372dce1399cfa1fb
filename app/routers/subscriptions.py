import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.core.dependencies import get_status_service
from app.core.exceptions import SubscriptionServiceError
from app.schemas.subscription import EntitlementState, OnchainStatusResponse, SubscriptionStatusResponse
from app.services.status_service import SubscriptionStatusService

logger = logging.getLogger(__name__)

router = APIRouter()

_MESSAGES = {
    EntitlementState.EXPIRED: "Subscription has expired",
    EntitlementState.NONE: "No subscription found",
}


@router.get(
    "/subscription-status/{wallet_address}",
    response_model=SubscriptionStatusResponse,
    response_model_exclude_none=True
)
async def get_subscription_status(
    wallet_address: str,
    status_service: SubscriptionStatusService = Depends(get_status_service)
):
    """Check whether a wallet currently holds an active subscription"""
    try:
        entitlement = await status_service.check_entitlement(wallet_address)
    except SubscriptionServiceError as e:
        logger.error("❌ Subscription status lookup failed for %s: %s", wallet_address, e.detail)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error"}
        )

    if entitlement.has_subscription:
        return SubscriptionStatusResponse(
            has_subscription=True,
            status=entitlement.state,
            expires_at=entitlement.expires_at,
            customer_email=entitlement.customer_email
        )
    return SubscriptionStatusResponse(
        has_subscription=False,
        status=entitlement.state,
        message=_MESSAGES[entitlement.state]
    )


@router.get(
    "/onchain-status/{wallet_address}",
    response_model=OnchainStatusResponse
)
async def get_onchain_status(wallet_address: str):
    """Placeholder for on-chain checks; no chain data is read yet"""
    return OnchainStatusResponse(
        wallet_address=wallet_address,
        has_onchain_data=False,
        message="On-chain status checks are not available yet"
    )
