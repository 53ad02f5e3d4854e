from typing import Any

from fastapi import APIRouter, HTTPException, status

from kapsule.api.v1.schemas.billing import CreateCheckoutIn, CreateCheckoutOut, LinkPurchaseIn
from kapsule.billing.revenuecat import PurchaseData, RevenueCatClient, RevenueCatError
from kapsule.billing.stripe_gateway import (
    StripeGatewayError,
    StripeNotConfiguredError,
    create_checkout_session,
    retrieve_checkout_session,
)
from kapsule.core.errors import error_body, sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import configured_secret, get_settings
from kapsule.core.supabase_rest import (
    select_user_display_name,
    select_user_email,
    upsert_customer,
    upsert_subscription,
)

router = APIRouter()
logger = get_logger("api.checkout")


@router.post("/create-checkout")
async def create_checkout(payload: CreateCheckoutIn) -> CreateCheckoutOut:
    if not payload.price_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required parameter: price_id",
        )
    if not payload.success_url or not payload.cancel_url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required parameters: success_url and cancel_url",
        )
    if not payload.user_id:
        logger.warning("stripe.checkout_without_user", extra={"component": "billing"})

    try:
        session = await create_checkout_session(
            price_id=payload.price_id,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
            mode=payload.mode,
            user_id=payload.user_id,
            product_id=payload.metadata.get("product_id"),
        )
    except StripeNotConfiguredError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe configuration missing. Please contact support.",
        ) from exc
    except StripeGatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_body(
                "Stripe checkout failed",
                sanitize_error(exc, default_message="Failed to create checkout session"),
            ),
        ) from exc

    return CreateCheckoutOut(url=session.url, session_id=session.id)


@router.post("/link-stripe-revenuecat")
async def link_stripe_revenuecat(payload: LinkPurchaseIn) -> dict[str, Any]:
    if not payload.session_id or not payload.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="session_id and user_id are required",
        )
    settings = get_settings()
    if not configured_secret(settings.STRIPE_SECRET_KEY):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe secret key not configured",
        )

    try:
        session = await retrieve_checkout_session(payload.session_id)
    except (StripeGatewayError, StripeNotConfiguredError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_body(
                "Failed to link payment to user account",
                sanitize_error(exc, default_message="checkout session lookup failed"),
            ),
        ) from exc

    if session.customer:
        result = await upsert_customer(session.customer, payload.user_id)
        if not result.ok:
            logger.warning(
                "billing.link_customer_write_failed",
                extra={"component": "billing", "user_id": payload.user_id, "error": result.error},
            )
        if session.subscription:
            result = await upsert_subscription(
                {"customer_id": session.customer, "subscription_id": session.subscription, "status": "active"}
            )
            if not result.ok:
                logger.warning(
                    "billing.link_subscription_write_failed",
                    extra={"component": "billing", "user_id": payload.user_id, "error": result.error},
                )

    api_key = configured_secret(settings.REVENUECAT_API_KEY)
    if api_key is None:
        logger.warning(
            "revenuecat.not_configured",
            extra={"component": "billing", "user_id": payload.user_id},
        )
    else:
        client = RevenueCatClient(api_key)
        try:
            await client.record_purchase(
                PurchaseData(
                    app_user_id=payload.user_id,
                    fetch_token=session.id,
                    product_id=settings.REVENUECAT_PRODUCT_ID,
                    price=(session.amount_total or 0) / 100,
                    currency=session.currency or settings.REVENUECAT_FALLBACK_CURRENCY,
                )
            )
            await client.update_attributes(
                payload.user_id,
                {
                    "$email": await select_user_email(payload.user_id),
                    "$displayName": await select_user_display_name(payload.user_id),
                    "subscription_status": "active",
                    "stripe_customer_id": session.customer,
                    "source": "web_signup",
                },
            )
        except (RevenueCatError, HTTPException) as exc:
            message = sanitize_error(exc, default_message="RevenueCat integration failed")
            logger.error(
                "revenuecat.link_failed",
                extra={"component": "billing", "user_id": payload.user_id, "error": message},
            )
            return {
                "success": True,
                "message": "Stripe payment linked to user account, but RevenueCat integration failed",
                "customer_id": session.customer,
                "warning": "RevenueCat integration failed - you may need to manually sync your subscription",
                "error_details": message,
            }

        logger.info(
            "revenuecat.linked",
            extra={"component": "billing", "user_id": payload.user_id, "customer_id": session.customer},
        )

    return {
        "success": True,
        "message": "Successfully linked Stripe payment to user account and RevenueCat",
        "customer_id": session.customer,
    }
