from typing import Any

import pytest
from fastapi.testclient import TestClient

from kapsule.api.v1.endpoints import checkout as checkout_endpoint
from kapsule.billing.revenuecat import RevenueCatError
from kapsule.billing.stripe_gateway import CheckoutSession, StripeGatewayError
from kapsule.core.supabase_rest import WriteResult
from kapsule.main import app

SESSION = CheckoutSession(id="cs_test_1", customer="cus_1", subscription="sub_1", amount_total=1099, currency="gbp")


class FakeRevenueCatClient:
    instances: list["FakeRevenueCatClient"] = []
    fail_purchase = False

    def __init__(self, api_key: str, **kwargs: Any) -> None:
        self.api_key = api_key
        self.purchases: list[Any] = []
        self.attributes: list[tuple[str, dict[str, Any]]] = []
        FakeRevenueCatClient.instances.append(self)

    async def record_purchase(self, purchase) -> dict[str, Any]:
        if FakeRevenueCatClient.fail_purchase:
            raise RevenueCatError(500, "upstream exploded")
        self.purchases.append(purchase)
        return {}

    async def update_attributes(self, app_user_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        self.attributes.append((app_user_id, attributes))
        return {}


@pytest.fixture(autouse=True)
def _fakes(monkeypatch) -> dict[str, list[Any]]:
    FakeRevenueCatClient.instances = []
    FakeRevenueCatClient.fail_purchase = False
    writes: dict[str, list[Any]] = {"customers": [], "subscriptions": []}

    async def fake_retrieve(session_id: str) -> CheckoutSession:
        assert session_id == SESSION.id
        return SESSION

    async def fake_upsert_customer(customer_id: str, user_id: str | None = None) -> WriteResult:
        writes["customers"].append((customer_id, user_id))
        return WriteResult(table="stripe_customers", ok=True)

    async def fake_upsert_subscription(record: dict[str, Any]) -> WriteResult:
        writes["subscriptions"].append(record)
        return WriteResult(table="stripe_subscriptions", ok=True)

    async def fake_email(user_id: str) -> str | None:
        return "artist@example.com"

    async def fake_display_name(user_id: str) -> str | None:
        return "DJ Test"

    monkeypatch.setattr(checkout_endpoint, "retrieve_checkout_session", fake_retrieve)
    monkeypatch.setattr(checkout_endpoint, "upsert_customer", fake_upsert_customer)
    monkeypatch.setattr(checkout_endpoint, "upsert_subscription", fake_upsert_subscription)
    monkeypatch.setattr(checkout_endpoint, "select_user_email", fake_email)
    monkeypatch.setattr(checkout_endpoint, "select_user_display_name", fake_display_name)
    monkeypatch.setattr(checkout_endpoint, "RevenueCatClient", FakeRevenueCatClient)
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    return writes


def test_link_requires_session_and_user() -> None:
    client = TestClient(app)
    response = client.post("/api/v1/link-stripe-revenuecat", json={"session_id": "cs_test_1"})
    assert response.status_code == 400
    assert response.json() == {"error": "session_id and user_id are required"}


def test_link_requires_stripe_key(monkeypatch) -> None:
    monkeypatch.delenv("STRIPE_SECRET_KEY")
    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Stripe secret key not configured"}


def test_link_reports_session_retrieval_failure(monkeypatch) -> None:
    async def failing_retrieve(session_id: str) -> CheckoutSession:
        raise StripeGatewayError("Failed to retrieve checkout session")

    monkeypatch.setattr(checkout_endpoint, "retrieve_checkout_session", failing_retrieve)
    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to link payment to user account",
        "details": "Failed to retrieve checkout session",
    }


def test_link_records_purchase_and_attributes(monkeypatch, _fakes) -> None:
    monkeypatch.setenv("REVENUECAT_API_KEY", "rc-key")
    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["customer_id"] == "cus_1"
    assert "warning" not in body
    assert _fakes["customers"] == [("cus_1", "user-1")]
    assert _fakes["subscriptions"] == [{"customer_id": "cus_1", "subscription_id": "sub_1", "status": "active"}]

    rc = FakeRevenueCatClient.instances[0]
    purchase = rc.purchases[0]
    assert purchase.app_user_id == "user-1"
    assert purchase.fetch_token == "cs_test_1"
    assert purchase.price == pytest.approx(10.99)
    assert purchase.currency == "gbp"
    assert purchase.presented_offering_identifier == "default"
    assert rc.attributes == [
        (
            "user-1",
            {
                "$email": "artist@example.com",
                "$displayName": "DJ Test",
                "subscription_status": "active",
                "stripe_customer_id": "cus_1",
                "source": "web_signup",
            },
        )
    ]


def test_link_degrades_to_warning_when_revenuecat_fails(monkeypatch, _fakes) -> None:
    monkeypatch.setenv("REVENUECAT_API_KEY", "rc-key")
    FakeRevenueCatClient.fail_purchase = True

    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["warning"].startswith("RevenueCat integration failed")
    assert "upstream exploded" in body["error_details"]
    assert _fakes["customers"] == [("cus_1", "user-1")]


def test_link_without_revenuecat_key_succeeds(monkeypatch) -> None:
    monkeypatch.delenv("REVENUECAT_API_KEY", raising=False)
    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert FakeRevenueCatClient.instances == []


def test_create_checkout_validates_parameters() -> None:
    client = TestClient(app)
    missing_price = client.post("/api/v1/create-checkout", json={"success_url": "a", "cancel_url": "b"})
    missing_urls = client.post("/api/v1/create-checkout", json={"price_id": "price_1"})

    assert missing_price.status_code == 400
    assert missing_price.json() == {"error": "Missing required parameter: price_id"}
    assert missing_urls.status_code == 400
    assert missing_urls.json() == {"error": "Missing required parameters: success_url and cancel_url"}


def test_create_checkout_returns_hosted_url(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    async def fake_create(**kwargs: Any) -> CheckoutSession:
        captured.update(kwargs)
        return CheckoutSession(id="cs_new", url="https://checkout.stripe.com/c/pay/cs_new")

    monkeypatch.setattr(checkout_endpoint, "create_checkout_session", fake_create)
    client = TestClient(app)
    response = client.post(
        "/api/v1/create-checkout",
        json={
            "price_id": "price_1",
            "success_url": "https://kapsule.example/welcome?paid=1",
            "cancel_url": "https://kapsule.example/welcome",
            "user_id": "user-1",
            "metadata": {"product_id": "prod_1"},
        },
    )

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.com/c/pay/cs_new", "session_id": "cs_new"}
    assert captured["mode"] == "subscription"
    assert captured["user_id"] == "user-1"
    assert captured["product_id"] == "prod_1"


def test_link_without_subscription_skips_subscription_write(monkeypatch, _fakes) -> None:
    one_off = CheckoutSession(id="cs_test_1", customer="cus_1", amount_total=499, currency="gbp")

    async def fake_retrieve(session_id: str) -> CheckoutSession:
        return one_off

    monkeypatch.setattr(checkout_endpoint, "retrieve_checkout_session", fake_retrieve)
    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )

    assert response.status_code == 200
    assert _fakes["customers"] == [("cus_1", "user-1")]
    assert _fakes["subscriptions"] == []


def test_link_continues_when_subscription_write_fails(monkeypatch, _fakes) -> None:
    async def failing_upsert_subscription(record: dict[str, Any]) -> WriteResult:
        return WriteResult(table="stripe_subscriptions", ok=False, error="db down")

    monkeypatch.setattr(checkout_endpoint, "upsert_subscription", failing_upsert_subscription)
    client = TestClient(app)
    response = client.post(
        "/api/v1/link-stripe-revenuecat",
        json={"session_id": "cs_test_1", "user_id": "user-1"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
