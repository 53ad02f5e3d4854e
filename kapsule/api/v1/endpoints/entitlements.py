from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from kapsule.api.v1.schemas.billing import UserIdIn
from kapsule.billing.entitlements import find_active_entitlement
from kapsule.billing.revenuecat import LookupFailed, RevenueCatClient, SubscriberMissing
from kapsule.core.errors import sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import configured_secret, get_settings

router = APIRouter()
logger = get_logger("api.entitlements")


def _no_entitlement(**diagnostic: str) -> dict[str, Any]:
    return {
        "hasArtistEntitlement": False,
        "entitlements": {},
        "subscriber": None,
        "expiresDate": None,
        **diagnostic,
    }


@router.post("/check-entitlements")
async def check_entitlements(request: Request) -> dict[str, Any]:
    """Report whether the user holds any unexpired entitlement.

    Only a missing ``user_id`` is an error; an unreadable body and provider
    trouble degrade to ``hasArtistEntitlement: false`` with a diagnostic field.
    """
    try:
        payload = UserIdIn.model_validate(await request.json())
    except ValueError as exc:
        message = sanitize_error(exc, default_message="invalid request body")
        logger.warning("revenuecat.entitlement_request_invalid", extra={"component": "billing", "error": message})
        return _no_entitlement(error="Failed to check entitlements", details=message)

    if not payload.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")

    api_key = configured_secret(get_settings().REVENUECAT_API_KEY)
    if api_key is None:
        logger.warning("revenuecat.not_configured", extra={"component": "billing"})
        return _no_entitlement(warning="RevenueCat integration not configured")

    lookup = await RevenueCatClient(api_key).get_subscriber(payload.user_id)
    if isinstance(lookup, SubscriberMissing):
        return _no_entitlement()
    if isinstance(lookup, LookupFailed):
        logger.warning(
            "revenuecat.lookup_failed",
            extra={
                "component": "billing",
                "user_id": payload.user_id,
                "status_code": lookup.status_code,
                "error": lookup.message,
            },
        )
        prefix = f"RevenueCat API error: {lookup.status_code}" if lookup.status_code else "RevenueCat request failed"
        return _no_entitlement(error=f"{prefix} - {lookup.message}")

    active = find_active_entitlement(lookup.entitlements)
    logger.info(
        "revenuecat.entitlements_checked",
        extra={
            "component": "billing",
            "user_id": payload.user_id,
            "active_entitlement": active.entitlement_id if active else None,
        },
    )
    return {
        "hasArtistEntitlement": active is not None,
        "entitlements": lookup.entitlements,
        "subscriber": lookup.subscriber,
        "expiresDate": active.expires_date if active else None,
    }
