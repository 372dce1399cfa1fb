import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import PersistenceError
from app.crud.subscription import CRUDSubscription, subscription_crud
from app.schemas.subscription import EntitlementState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    state: EntitlementState
    expires_at: Optional[datetime] = None
    customer_email: Optional[str] = None

    @property
    def has_subscription(self) -> bool:
        return self.state == EntitlementState.ACTIVE


def _as_utc(value: datetime) -> datetime:
    # Some drivers hand back naive timestamps; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionStatusService:
    """Answers whether a wallet is currently entitled.

    The stored status column only changes when Stripe sends a cancellation,
    so expiry is recomputed against the clock on every read.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        store: CRUDSubscription = subscription_crud,
        database_timeout: float = 10.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.session_factory = session_factory
        self.store = store
        self.database_timeout = database_timeout
        self.clock = clock

    async def check_entitlement(self, wallet_address: str) -> Entitlement:
        async def _lookup():
            async with self.session_factory() as db:
                return await self.store.find_active_by_wallet(db, wallet_address)

        try:
            subscription = await asyncio.wait_for(_lookup(), timeout=self.database_timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError("Subscription status lookup timed out") from e

        if subscription is None:
            return Entitlement(state=EntitlementState.NONE)

        if subscription.current_period_end is None:
            logger.warning("Active subscription %s has no period end; treating as expired", subscription.id)
            return Entitlement(state=EntitlementState.EXPIRED, customer_email=subscription.customer_email)

        expires_at = _as_utc(subscription.current_period_end)
        if expires_at > self.clock():
            return Entitlement(
                state=EntitlementState.ACTIVE,
                expires_at=expires_at,
                customer_email=subscription.customer_email,
            )
        return Entitlement(
            state=EntitlementState.EXPIRED,
            expires_at=expires_at,
            customer_email=subscription.customer_email,
        )
