import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import stripe
from pydantic import ValidationError

from app.core.exceptions import AuthenticationError
from app.schemas.subscription import StripeEvent

logger = logging.getLogger(__name__)


class VerificationFailure(str, Enum):
    NOT_CONFIGURED = "not_configured"
    MISSING_SIGNATURE = "missing_signature"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED_PAYLOAD = "malformed_payload"


@dataclass(frozen=True)
class VerificationResult:
    event: Optional[StripeEvent] = None
    failure: Optional[VerificationFailure] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.event is not None

    def unwrap(self) -> StripeEvent:
        if self.event is None:
            raise AuthenticationError(self.detail or "Webhook signature verification failed")
        return self.event


class EventVerifier:
    """Authenticates Stripe webhook deliveries.

    The signature is checked against the exact request bytes; the body is only
    parsed once the signature has been accepted.
    """

    def __init__(self, webhook_secret: Optional[str], *, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature: Optional[str]) -> VerificationResult:
        if not self.webhook_secret:
            return self._fail(VerificationFailure.NOT_CONFIGURED, "Webhook secret not configured")
        if not signature:
            return self._fail(VerificationFailure.MISSING_SIGNATURE, "Missing Stripe signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            return self._fail(VerificationFailure.MALFORMED_PAYLOAD, "Payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            return self._fail(VerificationFailure.INVALID_SIGNATURE, str(e))

        try:
            event = StripeEvent.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            return self._fail(VerificationFailure.MALFORMED_PAYLOAD, f"Invalid payload: {e}")

        return VerificationResult(event=event)

    @staticmethod
    def _fail(failure: VerificationFailure, detail: str) -> VerificationResult:
        logger.warning("❌ Webhook signature verification failed (%s): %s", failure.value, detail)
        return VerificationResult(failure=failure, detail=detail)
