from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any

from kapsule.billing.entitlements import Tier, find_active_entitlement
from kapsule.billing.revenuecat import RevenueCatClient, SubscriberFound
from kapsule.core.logging import get_logger
from kapsule.core.supabase_rest import update_artist_tier

logger = get_logger("billing.revenuecat_events")

GRANTING_EVENTS = frozenset({"INITIAL_PURCHASE", "RENEWAL", "PRODUCT_CHANGE"})
REVOKING_EVENTS = frozenset({"CANCELLATION", "EXPIRATION", "BILLING_ISSUE"})
ALIAS_EVENT = "SUBSCRIBER_ALIAS"


@dataclass(frozen=True)
class RevenueCatEventResult:
    event_type: str
    app_user_id: str | None
    tier: Tier | None
    message: str


def authorization_matches(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _event_has_product_entitlement(event: dict[str, Any], product_id: str) -> bool:
    entitlements = event.get("entitlements")
    if not isinstance(entitlements, dict):
        return False
    return find_active_entitlement(entitlements, product_identifier=product_id) is not None


async def _has_product_entitlement(client: RevenueCatClient, app_user_id: str, product_id: str) -> bool:
    lookup = await client.get_subscriber(app_user_id)
    if not isinstance(lookup, SubscriberFound):
        return False
    return find_active_entitlement(lookup.entitlements, product_identifier=product_id) is not None


async def handle_revenuecat_event(
    event: dict[str, Any],
    *,
    client: RevenueCatClient | None,
    product_id: str,
) -> RevenueCatEventResult:
    """Map an entitlement-service webhook event onto the artist tier.

    Granting events only promote to ``pro`` when an entitlement for
    ``product_id`` is still active. With a client the subscriber is re-read;
    without one (API key unset) the entitlements carried by the event decide.
    """
    event_type = str(event.get("type") or "UNKNOWN")
    raw_user = event.get("app_user_id")
    app_user_id = raw_user if isinstance(raw_user, str) and raw_user else None

    logger.info(
        "revenuecat.event_received",
        extra={"component": "billing", "event_type": event_type, "app_user_id": app_user_id},
    )

    if app_user_id is None:
        return RevenueCatEventResult(event_type, None, None, "Event has no app_user_id")

    tier: Tier | None = None
    if event_type in GRANTING_EVENTS:
        if client is None:
            active = _event_has_product_entitlement(event, product_id)
        else:
            active = await _has_product_entitlement(client, app_user_id, product_id)
        if active:
            tier = Tier.PRO
        elif event_type == "PRODUCT_CHANGE":
            tier = Tier.BASIC
    elif event_type in REVOKING_EVENTS:
        tier = Tier.BASIC
    elif event_type == ALIAS_EVENT:
        logger.info(
            "revenuecat.subscriber_aliased",
            extra={"component": "billing", "app_user_id": app_user_id},
        )
        return RevenueCatEventResult(event_type, app_user_id, None, "Alias event recorded")
    else:
        logger.info(
            "revenuecat.event_unhandled",
            extra={"component": "billing", "event_type": event_type},
        )
        return RevenueCatEventResult(event_type, app_user_id, None, "Event type not handled")

    if tier is None:
        return RevenueCatEventResult(event_type, app_user_id, None, "No active entitlement for product")

    result = await update_artist_tier(app_user_id, tier.value)
    if not result.ok:
        return RevenueCatEventResult(event_type, app_user_id, None, f"Failed to update tier: {result.error}")

    logger.info(
        "billing.tier_updated",
        extra={"component": "billing", "user_id": app_user_id, "tier": tier.value, "source": "revenuecat"},
    )
    return RevenueCatEventResult(event_type, app_user_id, tier, f"Tier set to {tier.value}")
