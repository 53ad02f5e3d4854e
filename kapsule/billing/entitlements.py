from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Tier(str, Enum):
    BASIC = "basic"
    PRO = "pro"


ACTIVE_SUBSCRIPTION_STATUS = "active"


def tier_for_status(status: str | None) -> Tier:
    if status == ACTIVE_SUBSCRIPTION_STATUS:
        return Tier.PRO
    return Tier.BASIC


@dataclass(frozen=True)
class ActiveEntitlement:
    entitlement_id: str
    expires_date: str
    product_identifier: str | None


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def find_active_entitlement(
    entitlements: Mapping[str, Any] | None,
    *,
    now: datetime | None = None,
    product_identifier: str | None = None,
) -> ActiveEntitlement | None:
    """Return the first entitlement whose expiry lies in the future.

    Entitlements without an expiry date never count as active. When
    ``product_identifier`` is given only entitlements granted by that product
    are considered.
    """
    if not entitlements:
        return None

    reference = now or datetime.now(UTC)
    for entitlement_id, entitlement in entitlements.items():
        if not isinstance(entitlement, Mapping):
            continue
        product = entitlement.get("product_identifier")
        if product_identifier is not None and product != product_identifier:
            continue
        expires_raw = entitlement.get("expires_date")
        expires_at = parse_timestamp(expires_raw)
        if expires_at is None or expires_at <= reference:
            continue
        return ActiveEntitlement(
            entitlement_id=str(entitlement_id),
            expires_date=expires_raw,
            product_identifier=product if isinstance(product, str) else None,
        )
    return None
