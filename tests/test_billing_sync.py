import asyncio
from typing import Any

import pytest

from kapsule.billing import sync
from kapsule.billing.entitlements import Tier
from kapsule.billing.stripe_gateway import StripeEvent
from kapsule.core.supabase_rest import WriteResult

EVENT_CREATED = 1_760_000_000
EVENT_CREATED_ISO = "2025-10-09T08:53:20Z"


def _event(event_type: str, obj: dict[str, Any], created: int = EVENT_CREATED) -> StripeEvent:
    return StripeEvent.model_validate(
        {"id": "evt_1", "type": event_type, "created": created, "data": {"object": obj}}
    )


class FakeStore:
    def __init__(self, customers: dict[str, str | None] | None = None) -> None:
        self.customers = customers or {}
        self.subscriptions: dict[tuple[str, str], dict[str, Any]] = {}
        self.tiers: dict[str, str] = {}
        self.customer_writes: list[tuple[str, str | None]] = []
        self.fail_tier_write = False

    async def select_customer(self, customer_id: str) -> dict[str, Any] | None:
        if customer_id not in self.customers:
            return None
        return {"customer_id": customer_id, "user_id": self.customers[customer_id]}

    async def select_subscription(self, customer_id: str, subscription_id: str) -> dict[str, Any] | None:
        return self.subscriptions.get((customer_id, subscription_id))

    async def upsert_customer(self, customer_id: str, user_id: str | None = None) -> WriteResult:
        self.customer_writes.append((customer_id, user_id))
        self.customers[customer_id] = user_id
        return WriteResult(table="stripe_customers", ok=True)

    async def upsert_subscription(self, record: dict[str, Any]) -> WriteResult:
        key = (record["customer_id"], record["subscription_id"])
        merged = {**self.subscriptions.get(key, {}), **{k: v for k, v in record.items() if v is not None}}
        self.subscriptions[key] = merged
        return WriteResult(table="stripe_subscriptions", ok=True)

    async def update_artist_tier(self, user_id: str, tier: str) -> WriteResult:
        if self.fail_tier_write:
            return WriteResult(table="artist_profiles", ok=False, error="HTTP 500")
        self.tiers[user_id] = tier
        return WriteResult(table="artist_profiles", ok=True)


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    fake = FakeStore(customers={"cus_1": "user-1"})
    for name in (
        "select_customer",
        "select_subscription",
        "upsert_customer",
        "upsert_subscription",
        "update_artist_tier",
    ):
        monkeypatch.setattr(sync, name, getattr(fake, name))
    return fake


def test_subscription_updated_active_sets_pro(store: FakeStore) -> None:
    event = _event(
        "customer.subscription.updated",
        {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "cancel_at_period_end": False,
            "current_period_start": 1_760_000_000,
            "current_period_end": 1_762_592_000,
        },
    )

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.tier == Tier.PRO
    assert store.tiers == {"user-1": "pro"}
    row = store.subscriptions[("cus_1", "sub_1")]
    assert row["status"] == "active"
    assert row["cancel_at_period_end"] is False
    assert row["current_period_start"] == EVENT_CREATED_ISO
    assert row["last_event_at"] == EVENT_CREATED_ISO


def test_subscription_updated_past_due_sets_basic(store: FakeStore) -> None:
    store.tiers["user-1"] = "pro"
    event = _event("customer.subscription.updated", {"id": "sub_1", "customer": "cus_1", "status": "past_due"})

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.tier == Tier.BASIC
    assert store.tiers["user-1"] == "basic"
    assert store.subscriptions[("cus_1", "sub_1")]["status"] == "past_due"


def test_subscription_updated_reads_period_from_items(store: FakeStore) -> None:
    event = _event(
        "customer.subscription.updated",
        {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "items": {"data": [{"current_period_start": 1_760_000_000, "current_period_end": 1_762_592_000}]},
        },
    )

    asyncio.run(sync.dispatch_event(event))

    row = store.subscriptions[("cus_1", "sub_1")]
    assert row["current_period_start"] == EVENT_CREATED_ISO
    assert row["current_period_end"].startswith("2025-11-08")


def test_subscription_deleted_sets_basic_and_canceled(store: FakeStore) -> None:
    store.tiers["user-1"] = "pro"
    event = _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1", "status": "canceled"})

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.tier == Tier.BASIC
    assert store.tiers["user-1"] == "basic"
    assert store.subscriptions[("cus_1", "sub_1")]["status"] == "canceled"


def test_unknown_customer_is_skipped(store: FakeStore) -> None:
    event = _event("customer.subscription.updated", {"id": "sub_9", "customer": "cus_9", "status": "active"})

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.skipped == "unknown_customer"
    assert store.subscriptions == {}
    assert store.tiers == {}


def test_stale_event_does_not_roll_back_tier(store: FakeStore) -> None:
    newer = _event(
        "customer.subscription.deleted",
        {"id": "sub_1", "customer": "cus_1", "status": "canceled"},
        created=EVENT_CREATED + 60,
    )
    older = _event(
        "customer.subscription.updated",
        {"id": "sub_1", "customer": "cus_1", "status": "active"},
        created=EVENT_CREATED,
    )

    asyncio.run(sync.dispatch_event(newer))
    outcome = asyncio.run(sync.dispatch_event(older))

    assert outcome is not None
    assert outcome.skipped == "stale_event"
    assert store.tiers["user-1"] == "basic"
    assert store.subscriptions[("cus_1", "sub_1")]["status"] == "canceled"


def test_redelivered_event_is_applied_again(store: FakeStore) -> None:
    event = _event("customer.subscription.updated", {"id": "sub_1", "customer": "cus_1", "status": "active"})

    asyncio.run(sync.dispatch_event(event))
    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.skipped is None
    assert store.tiers["user-1"] == "pro"


def test_checkout_completed_links_user_and_sets_pro(store: FakeStore) -> None:
    event = _event(
        "checkout.session.completed",
        {
            "id": "cs_1",
            "customer": "cus_2",
            "subscription": "sub_2",
            "metadata": {"user_id": "user-2", "source": "web_signup"},
        },
    )

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert store.customer_writes == [("cus_2", "user-2")]
    assert store.subscriptions[("cus_2", "sub_2")]["status"] == "active"
    assert store.tiers == {"user-2": "pro"}


def test_checkout_completed_without_user_only_records_customer(store: FakeStore) -> None:
    event = _event("checkout.session.completed", {"id": "cs_1", "customer": "cus_3", "metadata": {}})

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.tier is None
    assert store.customer_writes == [("cus_3", None)]
    assert store.tiers == {}


def test_invoice_paid_uses_parent_subscription_details(store: FakeStore) -> None:
    event = _event(
        "invoice.payment_succeeded",
        {
            "id": "in_1",
            "customer": "cus_1",
            "parent": {"subscription_details": {"subscription": "sub_1"}},
        },
    )

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.tier == Tier.PRO
    assert store.subscriptions[("cus_1", "sub_1")]["status"] == "active"


def test_failed_tier_write_is_reported(store: FakeStore) -> None:
    store.fail_tier_write = True
    event = _event("customer.subscription.updated", {"id": "sub_1", "customer": "cus_1", "status": "active"})

    outcome = asyncio.run(sync.dispatch_event(event))

    assert outcome is not None
    assert outcome.tier is None
    assert [result.table for result in outcome.failed_writes] == ["artist_profiles"]


def test_unhandled_event_type_returns_none(store: FakeStore) -> None:
    event = _event("charge.refunded", {"id": "ch_1"})

    assert asyncio.run(sync.dispatch_event(event)) is None
    assert store.subscriptions == {}
