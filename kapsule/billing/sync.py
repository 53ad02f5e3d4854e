"""
Subscription state synchronisation driven by Stripe webhook events.

Each handler fetches the local customer row, upserts the subscription row and
sets the artist tier. Subscription events older than the ``last_event_at``
already stored for that subscription are skipped, so out-of-order delivery
cannot roll the tier back to a superseded status.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from kapsule.billing.entitlements import Tier, parse_timestamp, tier_for_status
from kapsule.billing.stripe_gateway import StripeEvent
from kapsule.core.logging import get_logger
from kapsule.core.supabase_rest import (
    WriteResult,
    select_customer,
    select_subscription,
    update_artist_tier,
    upsert_customer,
    upsert_subscription,
)

logger = get_logger("billing.sync")

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


@dataclass
class SyncOutcome:
    event_type: str
    customer_id: str | None = None
    user_id: str | None = None
    tier: Tier | None = None
    skipped: str | None = None
    writes: list[WriteResult] = field(default_factory=list)

    @property
    def failed_writes(self) -> list[WriteResult]:
        return [result for result in self.writes if not result.ok]


def _epoch_to_iso(value: int | None) -> str | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC).isoformat().replace("+00:00", "Z")


async def _resolve_user_id(customer_id: str) -> str | None:
    row = await select_customer(customer_id)
    user_id = row.get("user_id") if row else None
    return user_id if isinstance(user_id, str) and user_id else None


async def _is_stale(event: StripeEvent, customer_id: str, subscription_id: str) -> bool:
    existing = await select_subscription(customer_id, subscription_id)
    if not existing:
        return False
    stored_at = parse_timestamp(existing.get("last_event_at"))
    if stored_at is None:
        return False
    return datetime.fromtimestamp(event.created, tz=UTC) < stored_at


def _subscription_record(
    event: StripeEvent,
    *,
    customer_id: str,
    subscription_id: str,
    status: str,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "customer_id": customer_id,
        "subscription_id": subscription_id,
        "status": status,
        "last_event_at": _epoch_to_iso(event.created),
        **extra,
    }


async def _apply_tier(outcome: SyncOutcome, user_id: str, tier: Tier) -> None:
    result = await update_artist_tier(user_id, tier.value)
    outcome.writes.append(result)
    if result.ok:
        outcome.tier = tier
        logger.info(
            "billing.tier_updated",
            extra={"component": "billing", "user_id": user_id, "tier": tier.value},
        )


async def handle_checkout_completed(event: StripeEvent) -> SyncOutcome:
    session = event.checkout_session()
    outcome = SyncOutcome(event_type=event.type, customer_id=session.customer, user_id=session.user_id)
    if not session.customer:
        outcome.skipped = "missing_customer"
        return outcome

    outcome.writes.append(await upsert_customer(session.customer, session.user_id))

    if session.subscription:
        if await _is_stale(event, session.customer, session.subscription):
            outcome.skipped = "stale_event"
            return outcome
        outcome.writes.append(
            await upsert_subscription(
                _subscription_record(
                    event,
                    customer_id=session.customer,
                    subscription_id=session.subscription,
                    status="active",
                )
            )
        )

    if session.user_id:
        await _apply_tier(outcome, session.user_id, Tier.PRO)
    return outcome


async def handle_invoice_payment_succeeded(event: StripeEvent) -> SyncOutcome:
    invoice = event.invoice()
    outcome = SyncOutcome(event_type=event.type, customer_id=invoice.customer)

    outcome.user_id = await _resolve_user_id(invoice.customer)
    if not outcome.user_id:
        outcome.skipped = "unknown_customer"
        return outcome

    subscription_id = invoice.subscription_id
    if subscription_id:
        if await _is_stale(event, invoice.customer, subscription_id):
            outcome.skipped = "stale_event"
            return outcome
        outcome.writes.append(
            await upsert_subscription(
                _subscription_record(
                    event,
                    customer_id=invoice.customer,
                    subscription_id=subscription_id,
                    status="active",
                )
            )
        )

    await _apply_tier(outcome, outcome.user_id, Tier.PRO)
    return outcome


async def handle_subscription_updated(event: StripeEvent) -> SyncOutcome:
    subscription = event.subscription()
    outcome = SyncOutcome(event_type=event.type, customer_id=subscription.customer)

    outcome.user_id = await _resolve_user_id(subscription.customer)
    if not outcome.user_id:
        outcome.skipped = "unknown_customer"
        return outcome
    if await _is_stale(event, subscription.customer, subscription.id):
        outcome.skipped = "stale_event"
        return outcome

    period_start, period_end = subscription.period_bounds
    outcome.writes.append(
        await upsert_subscription(
            _subscription_record(
                event,
                customer_id=subscription.customer,
                subscription_id=subscription.id,
                status=subscription.status,
                current_period_start=_epoch_to_iso(period_start),
                current_period_end=_epoch_to_iso(period_end),
                cancel_at_period_end=subscription.cancel_at_period_end,
            )
        )
    )

    await _apply_tier(outcome, outcome.user_id, tier_for_status(subscription.status))
    return outcome


async def handle_subscription_deleted(event: StripeEvent) -> SyncOutcome:
    subscription = event.subscription()
    outcome = SyncOutcome(event_type=event.type, customer_id=subscription.customer)

    outcome.user_id = await _resolve_user_id(subscription.customer)
    if not outcome.user_id:
        outcome.skipped = "unknown_customer"
        return outcome
    if await _is_stale(event, subscription.customer, subscription.id):
        outcome.skipped = "stale_event"
        return outcome

    outcome.writes.append(
        await upsert_subscription(
            _subscription_record(
                event,
                customer_id=subscription.customer,
                subscription_id=subscription.id,
                status="canceled",
            )
        )
    )

    await _apply_tier(outcome, outcome.user_id, Tier.BASIC)
    return outcome


EventHandler = Callable[[StripeEvent], Awaitable[SyncOutcome]]

EVENT_HANDLERS: dict[str, EventHandler] = {
    CHECKOUT_COMPLETED: handle_checkout_completed,
    INVOICE_PAYMENT_SUCCEEDED: handle_invoice_payment_succeeded,
    SUBSCRIPTION_UPDATED: handle_subscription_updated,
    SUBSCRIPTION_DELETED: handle_subscription_deleted,
}


async def dispatch_event(event: StripeEvent) -> SyncOutcome | None:
    """Run the handler registered for the event type; None when unhandled."""
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info(
            "stripe.event_unhandled",
            extra={"component": "billing", "event_id": event.id, "event_type": event.type},
        )
        return None

    outcome = await handler(event)
    logger.info(
        "stripe.event_processed",
        extra={
            "component": "billing",
            "event_id": event.id,
            "event_type": event.type,
            "customer_id": outcome.customer_id,
            "user_id": outcome.user_id,
            "tier": outcome.tier.value if outcome.tier else None,
            "skipped": outcome.skipped,
            "failed_writes": [result.table for result in outcome.failed_writes],
        },
    )
    return outcome
