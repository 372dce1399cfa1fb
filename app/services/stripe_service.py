import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import stripe

from app.core.config import Settings
from app.core.exceptions import BillingProviderError

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> Dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeService:
    """Thin async wrapper around the Stripe SDK.

    Holds its own API key (the module-level ``stripe.api_key`` is never set)
    and bounds every blocking SDK call with a timeout.
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        price_id: Optional[str] = None,
        timeout: float = 10.0
    ):
        self.api_key = api_key
        self.price_id = price_id
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeService":
        return cls(
            settings.stripe_secret_key,
            price_id=settings.stripe_price_id,
            timeout=settings.stripe_timeout_seconds,
        )

    async def _call(self, description: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        if not self.api_key:
            raise BillingProviderError("Stripe not configured")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("⏱️ Stripe %s timed out after %.1fs", description, self.timeout)
            raise BillingProviderError(f"Stripe {description} timed out") from e
        except stripe.StripeError as e:
            logger.error("❌ Stripe %s failed: %s", description, e)
            raise BillingProviderError(f"Stripe {description} failed: {str(e)}") from e

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Fetch the full subscription object, including its metadata"""
        subscription = await self._call(
            "subscription lookup", stripe.Subscription.retrieve, subscription_id
        )
        return _to_dict(subscription)

    async def create_checkout_session(
        self,
        wallet_address: str,
        success_url: str,
        cancel_url: str
    ) -> str:
        """Create a subscription checkout session tagged with the wallet address"""
        if not self.price_id:
            raise BillingProviderError("Price ID not configured")

        metadata = {"wallet_address": wallet_address}
        session = await self._call(
            "checkout session creation",
            stripe.checkout.Session.create,
            payment_method_types=['card'],
            line_items=[{
                'price': self.price_id,
                'quantity': 1,
            }],
            mode='subscription',
            success_url=success_url,
            cancel_url=cancel_url,
            subscription_data={'metadata': metadata},
            metadata=metadata,
        )
        return session["id"]
