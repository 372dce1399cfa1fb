from functools import wraps
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError


class SubscriptionServiceError(Exception):
    """Base class for errors raised by the subscription service"""

    def __init__(self, detail: str = "Subscription service error"):
        super().__init__(detail)
        self.detail = detail


class AuthenticationError(SubscriptionServiceError):
    """Webhook signature missing, invalid or not verifiable"""

    def __init__(self, detail: str = "Webhook signature verification failed"):
        super().__init__(detail)


class NotFoundError(SubscriptionServiceError):
    """Custom exception for not found errors"""

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ReconciliationError(SubscriptionServiceError):
    """An event could not be reconciled and must be redelivered"""


class MissingWalletError(ReconciliationError):
    """No wallet address could be resolved from the event payload"""

    def __init__(self, subscription_id: Optional[str] = None):
        detail = "Wallet address not found"
        if subscription_id:
            detail = f"Wallet address not found for subscription {subscription_id}"
        super().__init__(detail)
        self.subscription_id = subscription_id


class PersistenceError(ReconciliationError):
    """Custom exception for database errors"""

    def __init__(self, detail: str = "Database operation failed"):
        super().__init__(detail)


class BillingProviderError(ReconciliationError):
    """Stripe call failed or timed out"""

    def __init__(self, detail: str = "Billing provider request failed"):
        super().__init__(detail)


class MalformedEventError(ReconciliationError):
    """Event object is missing fields required to reconcile it"""

    def __init__(self, detail: str = "Malformed event"):
        super().__init__(detail)


def handle_database_errors(func: Callable) -> Callable:
    """Decorator to turn SQLAlchemy failures into PersistenceError"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SubscriptionServiceError:
            raise
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database operation failed: {str(e)}") from e
    return wrapper
