from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from .base import Base


class SubscriptionWallet(Base):
    """Wallet address linked to a subscription"""
    __tablename__ = "subscription_wallets"
    __table_args__ = (
        UniqueConstraint("subscription_id", "wallet_address", name="uq_subscription_wallets_subscription_wallet"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    wallet_address = Column(String(255), nullable=False, index=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    subscription = relationship("Subscription", back_populates="wallets")
