"""
Stripe access for checkout sessions and signed webhook events.

Signature verification is delegated to the ``stripe`` library. Event payloads
are parsed into the pydantic models below so the sync handlers work with
typed objects rather than raw dictionaries.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Literal

import stripe
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kapsule.core.logging import get_logger
from kapsule.core.settings import configured_secret, get_settings

logger = get_logger("billing.stripe")


class StripeNotConfiguredError(RuntimeError):
    pass


class WebhookVerificationError(ValueError):
    pass


class StripeGatewayError(RuntimeError):
    pass


class _StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CheckoutSessionObject(_StripeModel):
    id: str
    customer: str | None = None
    subscription: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    mode: str | None = None
    payment_status: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.metadata.get("user_id") or self.metadata.get("revenuecat_app_user_id") or None


class _SubscriptionDetails(_StripeModel):
    subscription: str | None = None


class _InvoiceParent(_StripeModel):
    subscription_details: _SubscriptionDetails | None = None


class InvoiceObject(_StripeModel):
    id: str
    customer: str
    subscription: str | None = None
    parent: _InvoiceParent | None = None

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None


class _SubscriptionItem(_StripeModel):
    current_period_start: int | None = None
    current_period_end: int | None = None


class _SubscriptionItems(_StripeModel):
    data: list[_SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(_StripeModel):
    id: str
    customer: str
    status: str
    cancel_at_period_end: bool | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None
    items: _SubscriptionItems | None = None

    @property
    def period_bounds(self) -> tuple[int | None, int | None]:
        if self.current_period_start is not None or self.current_period_end is not None:
            return self.current_period_start, self.current_period_end
        if self.items and self.items.data:
            first = self.items.data[0]
            return first.current_period_start, first.current_period_end
        return None, None


class _EventData(_StripeModel):
    object: dict[str, Any]


class StripeEvent(_StripeModel):
    id: str
    type: str
    created: int
    livemode: bool = False
    data: _EventData

    def checkout_session(self) -> CheckoutSessionObject:
        return CheckoutSessionObject.model_validate(self.data.object)

    def invoice(self) -> InvoiceObject:
        return InvoiceObject.model_validate(self.data.object)

    def subscription(self) -> SubscriptionObject:
        return SubscriptionObject.model_validate(self.data.object)


class CheckoutSession(_StripeModel):
    id: str
    customer: str | None = None
    subscription: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    url: str | None = None


def _require_secret_key() -> str:
    secret_key = configured_secret(get_settings().STRIPE_SECRET_KEY)
    if not secret_key:
        raise StripeNotConfiguredError("Stripe secret key not configured")
    return secret_key


def construct_event(payload: bytes, signature: str) -> StripeEvent:
    webhook_secret = configured_secret(get_settings().STRIPE_WEBHOOK_SECRET)
    if not webhook_secret:
        raise StripeNotConfiguredError("Webhook secret not configured")

    try:
        stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError(str(exc) or "signature mismatch") from exc
    except ValueError as exc:
        raise WebhookVerificationError(f"Invalid payload: {exc}") from exc

    try:
        return StripeEvent.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as exc:
        raise WebhookVerificationError("Invalid event payload") from exc


def _stripe_value(obj: Any, name: str) -> Any:
    value = getattr(obj, name, None)
    if value is None and isinstance(obj, dict):
        value = obj.get(name)
    if value is not None and not isinstance(value, str | int | bool) and hasattr(value, "id"):
        return value.id
    return value


def _to_checkout_session(obj: Any) -> CheckoutSession:
    return CheckoutSession.model_validate(
        {
            name: _stripe_value(obj, name)
            for name in ("id", "customer", "subscription", "amount_total", "currency", "url")
        }
    )


async def retrieve_checkout_session(session_id: str) -> CheckoutSession:
    secret_key = _require_secret_key()
    try:
        session = await asyncio.to_thread(
            stripe.checkout.Session.retrieve,
            session_id,
            api_key=secret_key,
        )
    except stripe.StripeError as exc:
        logger.error(
            "stripe.session_retrieve_failed",
            extra={"component": "billing", "session_id": session_id, "error": str(exc)[:300]},
        )
        raise StripeGatewayError("Failed to retrieve checkout session") from exc

    return _to_checkout_session(session)


async def create_checkout_session(
    *,
    price_id: str,
    success_url: str,
    cancel_url: str,
    mode: Literal["subscription", "payment"] = "subscription",
    user_id: str | None = None,
    product_id: str | None = None,
) -> CheckoutSession:
    secret_key = _require_secret_key()

    separator = "&" if "?" in success_url else "?"
    metadata: dict[str, str] = {"source": "web_signup"}
    if product_id:
        metadata["product_id"] = product_id
    if user_id:
        metadata["user_id"] = user_id
        metadata["revenuecat_app_user_id"] = user_id
        metadata["$RCAnonymousID"] = user_id

    try:
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=secret_key,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode=mode,
            success_url=f"{success_url}{separator}session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url,
            metadata=metadata,
        )
    except stripe.StripeError as exc:
        message = getattr(exc, "user_message", None) or str(exc) or "Failed to create checkout session"
        logger.error(
            "stripe.session_create_failed",
            extra={"component": "billing", "price_id": price_id, "error": message[:300]},
        )
        raise StripeGatewayError(message) from exc

    logger.info(
        "stripe.session_created",
        extra={"component": "billing", "checkout_session_id": _stripe_value(session, "id")},
    )
    return _to_checkout_session(session)
