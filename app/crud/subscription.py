import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError, handle_database_errors
from app.crud.base import CRUDBase
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_wallet import SubscriptionWallet
from app.schemas.subscription import SubscriptionCreate

logger = logging.getLogger(__name__)


class CRUDSubscription(CRUDBase[Subscription, SubscriptionCreate]):
    """Subscriptions and their wallet links.

    Write methods own the transaction of the session they are given: they
    commit on success and roll back before raising PersistenceError, so a
    caller never observes a subscription without its wallet link.
    """

    async def create_with_wallet(
        self,
        db: AsyncSession,
        *,
        obj_in: SubscriptionCreate,
        wallet_address: str
    ) -> int:
        """Insert a subscription and its primary wallet link atomically"""
        try:
            db_obj = self.model(**self._dump(obj_in))
            db.add(db_obj)
            # Flush to get the generated primary key for the link row
            await db.flush()
            db.add(SubscriptionWallet(
                subscription_id=db_obj.id,
                wallet_address=wallet_address,
                is_primary=True
            ))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("❌ Subscription insert rolled back for %s: %s", obj_in.stripe_subscription_id, e)
            raise PersistenceError(f"Failed to create subscription: {str(e)}") from e

        logger.info("💾 Subscription %s stored with wallet %s", db_obj.id, wallet_address)
        return db_obj.id

    async def get_or_create_with_wallet(
        self,
        db: AsyncSession,
        *,
        obj_in: SubscriptionCreate,
        wallet_address: str
    ) -> Tuple[int, bool]:
        """
        Create the subscription unless a row for the same Stripe subscription exists.
        Returns (subscription_id, created) tuple.
        """
        existing = await self.get_latest_by_stripe_subscription_id(db, obj_in.stripe_subscription_id)
        if existing:
            return existing.id, False
        subscription_id = await self.create_with_wallet(db, obj_in=obj_in, wallet_address=wallet_address)
        return subscription_id, True

    @handle_database_errors
    async def get_latest_by_stripe_subscription_id(
        self,
        db: AsyncSession,
        stripe_subscription_id: str
    ) -> Optional[Subscription]:
        """Get the most recently created row for a Stripe subscription ID"""
        result = await db.execute(
            select(self.model)
            .where(self.model.stripe_subscription_id == stripe_subscription_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def mark_cancelled(self, db: AsyncSession, stripe_subscription_id: str) -> int:
        """Set status to cancelled; returns the number of rows touched (0 for unknown IDs)"""
        try:
            result = await db.execute(
                update(self.model)
                .where(self.model.stripe_subscription_id == stripe_subscription_id)
                .values(status=SubscriptionStatus.CANCELLED.value, updated_at=func.now())
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError(f"Failed to cancel subscription: {str(e)}") from e
        return result.rowcount or 0

    @handle_database_errors
    async def find_active_by_wallet(self, db: AsyncSession, wallet_address: str) -> Optional[Subscription]:
        """Get the newest active subscription linked to a wallet"""
        result = await db.execute(
            select(self.model)
            .join(SubscriptionWallet, SubscriptionWallet.subscription_id == self.model.id)
            .where(
                and_(
                    SubscriptionWallet.wallet_address == wallet_address,
                    self.model.status == SubscriptionStatus.ACTIVE.value
                )
            )
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    @handle_database_errors
    async def get_wallets(self, db: AsyncSession, subscription_id: int) -> List[SubscriptionWallet]:
        """List wallet links of a subscription, primary first"""
        result = await db.execute(
            select(SubscriptionWallet)
            .where(SubscriptionWallet.subscription_id == subscription_id)
            .order_by(SubscriptionWallet.is_primary.desc(), SubscriptionWallet.id.asc())
        )
        return list(result.scalars().all())


subscription_crud = CRUDSubscription(Subscription)
