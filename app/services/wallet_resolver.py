import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from app.core.exceptions import MissingWalletError

logger = logging.getLogger(__name__)

WALLET_METADATA_KEY = "wallet_address"


class WalletSource(str, Enum):
    SUBSCRIPTION_METADATA = "subscription.metadata"
    SESSION_METADATA = "session.metadata"
    CUSTOMER_DETAILS_METADATA = "session.customer_details.metadata"


@dataclass(frozen=True)
class WalletResolution:
    address: Optional[str] = None
    source: Optional[WalletSource] = None

    @property
    def found(self) -> bool:
        return self.address is not None


def _metadata_value(obj: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not obj:
        return None
    metadata = obj.get("metadata") or {}
    value = metadata.get(WALLET_METADATA_KEY)
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def resolve_wallet_address(
    subscription: Optional[Mapping[str, Any]],
    session: Optional[Mapping[str, Any]] = None,
) -> WalletResolution:
    """Find the wallet address on a subscription/checkout session pair.

    Sources are tried in a fixed order and the first non-empty value wins;
    subscription metadata is checked first because checkout sessions created
    by this service write the address there.
    """
    candidates = (
        (WalletSource.SUBSCRIPTION_METADATA, subscription),
        (WalletSource.SESSION_METADATA, session),
        (WalletSource.CUSTOMER_DETAILS_METADATA, (session or {}).get("customer_details")),
    )
    for source, obj in candidates:
        address = _metadata_value(obj)
        if address:
            return WalletResolution(address=address, source=source)
    return WalletResolution()


def require_wallet_address(
    subscription: Optional[Mapping[str, Any]],
    session: Optional[Mapping[str, Any]] = None,
) -> str:
    resolution = resolve_wallet_address(subscription, session)
    subscription_id = (subscription or {}).get("id")
    if not resolution.found:
        logger.error("❌ No wallet address for subscription %s", subscription_id)
        raise MissingWalletError(subscription_id)
    logger.info("🔗 Wallet address %s (from %s)", resolution.address, resolution.source.value)
    return resolution.address
