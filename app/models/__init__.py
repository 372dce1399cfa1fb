# Database models package

from .base import Base
from .subscription import Subscription, SubscriptionStatus
from .subscription_wallet import SubscriptionWallet

__all__ = [
    'Base',
    'Subscription',
    'SubscriptionStatus',
    'SubscriptionWallet',
]
