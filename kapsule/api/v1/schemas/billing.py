from typing import Any, Literal

from pydantic import BaseModel, Field


class CreateCheckoutIn(BaseModel):
    price_id: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    mode: Literal["subscription", "payment"] = "subscription"
    user_id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class CreateCheckoutOut(BaseModel):
    url: str | None
    session_id: str


class LinkPurchaseIn(BaseModel):
    session_id: str | None = None
    user_id: str | None = None


class UserIdIn(BaseModel):
    user_id: str | None = None


class RevenueCatWebhookIn(BaseModel):
    api_version: str | None = None
    event: dict[str, Any] | None = None


class RevenueCatWebhookOut(BaseModel):
    success: bool
    message: str
    event_type: str
    app_user_id: str | None
