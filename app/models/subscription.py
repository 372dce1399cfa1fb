from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
import enum
from .base import Base, TimestampMixin


class SubscriptionStatus(str, enum.Enum):
    """Subscription status values written by the service.

    The column is a plain string so Stripe statuses observed at checkout
    (trialing, past_due, ...) can be stored verbatim.
    """
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Subscription(Base, TimestampMixin):
    """One Stripe subscription instance"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stripe_customer_id = Column(String(255), nullable=False)
    # Not unique: the most recently created row is authoritative
    stripe_subscription_id = Column(String(255), nullable=False, index=True)
    stripe_session_id = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    wallets = relationship(
        "SubscriptionWallet",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
