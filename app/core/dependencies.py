from fastapi import Depends, Request

from app.core.config import Settings
from app.services.event_verifier import EventVerifier
from app.services.reconciliation_service import ReconciliationService
from app.services.status_service import SubscriptionStatusService
from app.services.stripe_service import StripeService


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialised; is the application lifespan running?")
    return value


def get_settings(request: Request) -> Settings:
    return _state_attr(request, "settings")


def get_event_verifier(settings: Settings = Depends(get_settings)) -> EventVerifier:
    return EventVerifier(settings.stripe_webhook_secret, tolerance=settings.webhook_tolerance_seconds)


def get_stripe_service(request: Request) -> StripeService:
    return _state_attr(request, "stripe_service")


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return _state_attr(request, "reconciliation_service")


def get_status_service(request: Request) -> SubscriptionStatusService:
    return _state_attr(request, "status_service")
