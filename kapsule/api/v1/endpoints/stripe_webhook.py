from fastapi import APIRouter, Header, HTTPException, Request, status

from kapsule.billing.stripe_gateway import StripeNotConfiguredError, WebhookVerificationError, construct_event
from kapsule.billing.sync import dispatch_event
from kapsule.core.errors import error_body, sanitize_error
from kapsule.core.logging import get_logger

router = APIRouter()
logger = get_logger("api.stripe_webhook")


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
) -> dict[str, bool]:
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature provided")

    payload = await request.body()
    try:
        event = construct_event(payload, stripe_signature)
    except StripeNotConfiguredError as exc:
        logger.error("stripe.webhook_secret_missing", extra={"component": "billing"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        ) from exc
    except WebhookVerificationError as exc:
        message = sanitize_error(exc, default_message="signature mismatch")
        logger.warning("stripe.webhook_rejected", extra={"component": "billing", "error": message})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_body("Invalid signature", message),
        ) from exc

    logger.info(
        "stripe.webhook_received",
        extra={"component": "billing", "event_id": event.id, "event_type": event.type},
    )
    try:
        await dispatch_event(event)
    except Exception as exc:
        logger.error(
            "stripe.event_failed",
            extra={
                "component": "billing",
                "event_id": event.id,
                "event_type": event.type,
                "error": sanitize_error(exc, default_message="event handling failed"),
            },
        )

    return {"received": True}
