import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.exceptions import MalformedEventError, PersistenceError
from app.crud.subscription import CRUDSubscription, subscription_crud
from app.models.subscription import SubscriptionStatus
from app.schemas.subscription import StripeEvent, SubscriptionCreate
from app.services.stripe_service import StripeService
from app.services.wallet_resolver import require_wallet_address

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# Expiry recorded when Stripe does not report a usable period end
DEFAULT_BILLING_PERIOD = timedelta(days=30)


class ReconciliationOutcome(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    event_type: str
    stripe_subscription_id: Optional[str] = None
    subscription_id: Optional[int] = None
    wallet_address: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _epoch_to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def resolve_period_end(
    subscription: Mapping[str, Any],
    now: datetime,
    fallback: timedelta = DEFAULT_BILLING_PERIOD
) -> datetime:
    """Billing period end for a Stripe subscription.

    Newer Stripe API versions report the period on subscription items rather
    than on the subscription itself, so the first item is consulted second.
    """
    period_end = _epoch_to_datetime(subscription.get("current_period_end"))
    if period_end:
        return period_end

    items = (subscription.get("items") or {}).get("data") or []
    if items:
        period_end = _epoch_to_datetime(items[0].get("current_period_end"))
        if period_end:
            return period_end

    return now + fallback


def _object_id(value: Any) -> Optional[str]:
    # Stripe returns either an ID or the expanded object
    if isinstance(value, Mapping):
        return value.get("id")
    return value


def _customer_email(session: Mapping[str, Any]) -> Optional[str]:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


class ReconciliationService:
    """Applies verified Stripe events to stored subscription state.

    Each event runs in its own database session. A checkout completion
    performs, in order: Stripe lookup, wallet resolution, one transactional
    insert. Any failure propagates as a ReconciliationError with nothing
    written, leaving the event for Stripe to redeliver.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stripe_service: StripeService,
        *,
        store: CRUDSubscription = subscription_crud,
        database_timeout: float = 10.0,
        fallback_period: timedelta = DEFAULT_BILLING_PERIOD,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.session_factory = session_factory
        self.stripe_service = stripe_service
        self.store = store
        self.database_timeout = database_timeout
        self.fallback_period = fallback_period
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        stripe_service: StripeService
    ) -> "ReconciliationService":
        return cls(
            session_factory,
            stripe_service,
            database_timeout=settings.database_timeout_seconds,
            fallback_period=timedelta(days=settings.fallback_period_days),
        )

    async def handle_event(self, event: StripeEvent) -> ReconciliationResult:
        obj = event.data.object
        if event.type == CHECKOUT_COMPLETED:
            logger.info("✅ Checkout completed. Session ID: %s", obj.get("id"))
            return await self.handle_checkout_completed(obj)
        if event.type == SUBSCRIPTION_DELETED:
            logger.info("❌ Subscription cancelled. Subscription ID: %s", obj.get("id"))
            return await self.handle_subscription_cancelled(obj)

        logger.info("📝 Unhandled event type: %s", event.type)
        return ReconciliationResult(outcome=ReconciliationOutcome.IGNORED, event_type=event.type)

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> ReconciliationResult:
        session_id = session.get("id")
        stripe_subscription_id = _object_id(session.get("subscription"))
        if not session_id or not stripe_subscription_id:
            raise MalformedEventError("Checkout session without id or subscription")
        email = _customer_email(session)
        if not email:
            raise MalformedEventError(f"Checkout session {session_id} has no customer email")

        subscription = await self.stripe_service.retrieve_subscription(stripe_subscription_id)

        wallet_address = require_wallet_address(subscription, session)

        obj_in = SubscriptionCreate(
            stripe_customer_id=_object_id(subscription.get("customer")) or _object_id(session.get("customer")) or "",
            stripe_subscription_id=subscription.get("id") or stripe_subscription_id,
            stripe_session_id=session_id,
            customer_email=email,
            status=subscription.get("status") or SubscriptionStatus.ACTIVE.value,
            current_period_end=resolve_period_end(subscription, self.clock(), self.fallback_period),
        )

        subscription_id, created = await self._run_in_session(
            "subscription create",
            lambda db: self.store.get_or_create_with_wallet(
                db, obj_in=obj_in, wallet_address=wallet_address
            ),
        )
        if not created:
            logger.warning(
                "Subscription %s already stored as %s; ignoring redelivered checkout",
                obj_in.stripe_subscription_id, subscription_id
            )
        else:
            logger.info("✅ Subscription %s created and linked to %s", subscription_id, wallet_address)

        return ReconciliationResult(
            outcome=ReconciliationOutcome.CREATED if created else ReconciliationOutcome.DUPLICATE,
            event_type=CHECKOUT_COMPLETED,
            stripe_subscription_id=obj_in.stripe_subscription_id,
            subscription_id=subscription_id,
            wallet_address=wallet_address,
        )

    async def handle_subscription_cancelled(self, subscription: Dict[str, Any]) -> ReconciliationResult:
        stripe_subscription_id = subscription.get("id")
        if not stripe_subscription_id:
            raise MalformedEventError("Subscription event without id")

        updated = await self._run_in_session(
            "subscription cancel",
            lambda db: self.store.mark_cancelled(db, stripe_subscription_id),
        )
        if not updated:
            # Cancellation for a subscription we never stored (or not yet)
            logger.info("Cancellation for unknown subscription %s ignored", stripe_subscription_id)
            outcome = ReconciliationOutcome.NOT_FOUND
        else:
            logger.info("✅ Subscription %s marked cancelled", stripe_subscription_id)
            outcome = ReconciliationOutcome.CANCELLED

        return ReconciliationResult(
            outcome=outcome,
            event_type=SUBSCRIPTION_DELETED,
            stripe_subscription_id=stripe_subscription_id,
        )

    async def _run_in_session(
        self,
        description: str,
        operation: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        async def _run() -> T:
            async with self.session_factory() as db:
                return await operation(db)

        try:
            return await asyncio.wait_for(_run(), timeout=self.database_timeout)
        except asyncio.TimeoutError as e:
            logger.error("⏱️ Database %s timed out after %.1fs", description, self.database_timeout)
            raise PersistenceError(f"Database {description} timed out") from e
