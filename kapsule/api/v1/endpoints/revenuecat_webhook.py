from fastapi import APIRouter, Header, HTTPException, status

from kapsule.api.v1.schemas.billing import RevenueCatWebhookIn, RevenueCatWebhookOut
from kapsule.billing.revenuecat import RevenueCatClient
from kapsule.billing.revenuecat_events import authorization_matches, handle_revenuecat_event
from kapsule.core.logging import get_logger
from kapsule.core.settings import configured_secret, get_settings

router = APIRouter()
logger = get_logger("api.revenuecat_webhook")


@router.post("/revenuecat-webhook")
async def revenuecat_webhook(
    payload: RevenueCatWebhookIn,
    authorization: str | None = Header(default=None),
) -> RevenueCatWebhookOut:
    settings = get_settings()
    webhook_secret = configured_secret(settings.REVENUECAT_WEBHOOK_SECRET)
    if webhook_secret is None:
        logger.error("revenuecat.webhook_secret_missing", extra={"component": "billing"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    if not authorization_matches(authorization, webhook_secret):
        logger.warning("revenuecat.webhook_rejected", extra={"component": "billing"})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")
    if not payload.event:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No event data found in payload")

    api_key = configured_secret(settings.REVENUECAT_API_KEY)
    result = await handle_revenuecat_event(
        payload.event,
        client=RevenueCatClient(api_key) if api_key else None,
        product_id=settings.REVENUECAT_PRODUCT_ID,
    )
    logger.info(
        "revenuecat.webhook_processed",
        extra={
            "component": "billing",
            "event_type": result.event_type,
            "app_user_id": result.app_user_id,
            "outcome": result.message,
        },
    )
    return RevenueCatWebhookOut(
        success=True,
        message="Webhook processed successfully",
        event_type=result.event_type,
        app_user_id=result.app_user_id,
    )
