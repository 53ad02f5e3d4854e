from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from kapsule.core.errors import sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import get_settings

logger = get_logger("billing.revenuecat")


class RevenueCatError(RuntimeError):
    def __init__(self, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.message = message
        prefix = f"RevenueCat API error: {status_code}" if status_code else "RevenueCat request failed"
        super().__init__(f"{prefix} - {message}")


@dataclass(frozen=True)
class PurchaseData:
    app_user_id: str
    fetch_token: str
    product_id: str
    price: float
    currency: str
    is_restore: bool = False
    presented_offering_identifier: str = "default"


@dataclass(frozen=True)
class SubscriberFound:
    subscriber: dict[str, Any]
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def entitlements(self) -> dict[str, Any]:
        value = self.subscriber.get("entitlements")
        return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class SubscriberMissing:
    pass


@dataclass(frozen=True)
class LookupFailed:
    status_code: int | None
    message: str


SubscriberLookup = SubscriberFound | SubscriberMissing | LookupFailed


class RevenueCatClient:
    def __init__(self, api_key: str, *, base_url: str | None = None, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.base_url = (base_url or get_settings().REVENUECAT_API_URL).rstrip("/")
        self.timeout = timeout

    def _headers(self, platform: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if platform:
            headers["X-Platform"] = platform
        return headers

    def _subscriber_url(self, app_user_id: str, suffix: str = "") -> str:
        return f"{self.base_url}/subscribers/{quote(app_user_id, safe='')}{suffix}"

    async def get_subscriber(self, app_user_id: str) -> SubscriberLookup:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self._subscriber_url(app_user_id),
                    headers=self._headers(platform="web"),
                )
        except httpx.HTTPError as exc:
            return LookupFailed(None, sanitize_error(exc, default_message="RevenueCat unreachable"))

        if response.status_code == 404:
            return SubscriberMissing()
        if response.status_code >= 400:
            return LookupFailed(response.status_code, response.text[:500])

        try:
            payload = response.json()
        except ValueError:
            return LookupFailed(response.status_code, "Invalid subscriber response")
        subscriber = payload.get("subscriber") if isinstance(payload, dict) else None
        if not isinstance(subscriber, dict):
            return LookupFailed(response.status_code, "Invalid subscriber response")
        return SubscriberFound(subscriber=subscriber, raw=payload)

    async def record_purchase(self, purchase: PurchaseData) -> dict[str, Any]:
        body = asdict(purchase)
        body.pop("app_user_id")
        body["attributes"] = {"source": {"value": "web"}}
        logger.info(
            "revenuecat.record_purchase",
            extra={
                "component": "billing",
                "app_user_id": purchase.app_user_id,
                "product_id": purchase.product_id,
            },
        )
        return await self._post(
            self._subscriber_url(purchase.app_user_id, "/receipts"),
            body,
            platform="stripe",
        )

    async def update_attributes(self, app_user_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        cleaned = {
            key: {"value": str(value)}
            for key, value in attributes.items()
            if value is not None
        }
        return await self._post(
            self._subscriber_url(app_user_id, "/attributes"),
            {"attributes": cleaned},
        )

    async def create_subscriber(self, app_user_id: str, *, source: str) -> dict[str, Any]:
        return await self._post(
            self._subscriber_url(app_user_id),
            {"app_user_id": app_user_id, "attributes": {"source": {"value": source}}},
        )

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        platform: str | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=self._headers(platform=platform))
        except httpx.HTTPError as exc:
            raise RevenueCatError(None, sanitize_error(exc, default_message="RevenueCat unreachable")) from exc

        if response.status_code >= 400:
            raise RevenueCatError(response.status_code, response.text[:500])

        try:
            result = response.json()
        except ValueError:
            return {}
        return result if isinstance(result, dict) else {}
