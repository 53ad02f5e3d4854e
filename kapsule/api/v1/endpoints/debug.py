"""
Purchase reconciliation.

Compares the local Stripe mirror with the entitlement service for one user.
When Stripe shows an active subscription but the entitlement service has no
subscriber, the subscriber is created and the purchase replayed.
"""
import time
from typing import Any

from fastapi import APIRouter, HTTPException, status

from kapsule.api.v1.schemas.billing import UserIdIn
from kapsule.billing.entitlements import ACTIVE_SUBSCRIPTION_STATUS
from kapsule.billing.revenuecat import (
    PurchaseData,
    RevenueCatClient,
    RevenueCatError,
    SubscriberFound,
    SubscriberLookup,
    SubscriberMissing,
)
from kapsule.core.errors import error_body, sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import Settings, configured_secret, get_settings
from kapsule.core.supabase_rest import select_customer_for_user, select_latest_subscription

router = APIRouter()
logger = get_logger("api.debug")


def _subscriber_payload(lookup: SubscriberLookup) -> dict[str, Any] | None:
    return lookup.raw if isinstance(lookup, SubscriberFound) else None


async def _repair_subscriber(
    client: RevenueCatClient,
    user_id: str,
    subscription: dict[str, Any],
    settings: Settings,
) -> SubscriberLookup:
    await client.create_subscriber(user_id, source="stripe_web_manual")
    subscription_id = subscription.get("subscription_id")
    fetch_token = subscription_id if isinstance(subscription_id, str) and subscription_id else None
    await client.record_purchase(
        PurchaseData(
            app_user_id=user_id,
            fetch_token=fetch_token or f"manual_{int(time.time() * 1000)}",
            product_id=settings.REVENUECAT_PRODUCT_ID,
            price=settings.REVENUECAT_FALLBACK_PRICE,
            currency=settings.REVENUECAT_FALLBACK_CURRENCY,
        )
    )
    return await client.get_subscriber(user_id)


@router.post("/debug-purchase")
async def debug_purchase(payload: UserIdIn) -> dict[str, Any]:
    if not payload.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")

    settings = get_settings()
    api_key = configured_secret(settings.REVENUECAT_API_KEY)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="RevenueCat API key not configured",
        )

    user_id = payload.user_id
    try:
        customer = await select_customer_for_user(user_id)
        subscription = None
        if customer and customer.get("customer_id"):
            subscription = await select_latest_subscription(str(customer["customer_id"]))
    except HTTPException as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_body("Debug function failed", sanitize_error(exc, default_message="lookup failed")),
        ) from exc

    client = RevenueCatClient(api_key)
    lookup = await client.get_subscriber(user_id)
    stripe_active = bool(subscription) and subscription.get("status") == ACTIVE_SUBSCRIPTION_STATUS

    repaired = False
    repair_error: str | None = None
    if stripe_active and isinstance(lookup, SubscriberMissing):
        logger.info("revenuecat.repair_started", extra={"component": "billing", "user_id": user_id})
        try:
            lookup = await _repair_subscriber(client, user_id, subscription, settings)
            repaired = isinstance(lookup, SubscriberFound)
        except RevenueCatError as exc:
            repair_error = sanitize_error(exc, default_message="repair failed")
            logger.error(
                "revenuecat.repair_failed",
                extra={"component": "billing", "user_id": user_id, "error": repair_error},
            )

    subscriber = _subscriber_payload(lookup)
    entitlements = lookup.entitlements if isinstance(lookup, SubscriberFound) else {}
    return {
        "user_id": user_id,
        "stripe_customer": customer,
        "stripe_subscription": subscription,
        "revenuecat_subscriber": subscriber,
        "debug_info": {
            "has_stripe_customer": customer is not None,
            "has_stripe_subscription": subscription is not None,
            "stripe_subscription_active": stripe_active,
            "has_revenuecat_subscriber": subscriber is not None,
            "revenuecat_entitlements": entitlements,
            "revenuecat_product_id_used": settings.REVENUECAT_PRODUCT_ID,
            "repaired": repaired,
            "repair_error": repair_error,
        },
    }
