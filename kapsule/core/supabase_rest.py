from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from fastapi import HTTPException, status

from kapsule.core.errors import sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import get_settings

logger = get_logger("datastore")

CUSTOMERS_TABLE = "stripe_customers"
SUBSCRIPTIONS_TABLE = "stripe_subscriptions"
ARTIST_PROFILES_TABLE = "artist_profiles"
PROFILES_TABLE = "profiles"

ARTIST_PROFILE_COLUMNS = (
    "id,artist_name,username,bio,genre,profile_image_url,subscription_tier,updated_at"
)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a local write. Datastore failures are reported here, not raised."""

    table: str
    ok: bool
    error: str | None = None


def now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def supabase_service_role_headers() -> dict[str, str]:
    settings = get_settings()
    service_role_key = settings.SUPABASE_SERVICE_ROLE_KEY
    if not service_role_key or not service_role_key.strip():
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Datastore service credentials not configured",
        )
    return {
        "Authorization": f"Bearer {service_role_key}",
        "apikey": service_role_key,
        "Accept": "application/json",
    }


def _rest_url(table: str) -> str:
    settings = get_settings()
    return f"{settings.SUPABASE_URL.rstrip('/')}/rest/v1/{table}"


def _supabase_error_detail(response: httpx.Response) -> str | None:
    payload: Any
    try:
        payload = response.json()
    except ValueError:
        return None

    if not isinstance(payload, dict):
        return None

    detail = payload.get("message")
    if isinstance(detail, str) and detail:
        return detail

    detail = payload.get("detail")
    if isinstance(detail, str) and detail:
        return detail

    return None


def _validated_list_payload(payload: Any, error_message: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_message)

    for item in payload:
        if not isinstance(item, dict):
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_message)

    return payload


async def _service_role_select(
    table: str,
    params: dict[str, str],
    *,
    error_detail: str,
) -> list[dict[str, Any]]:
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(
                _rest_url(table),
                params=params,
                headers=supabase_service_role_headers(),
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_detail) from exc

    return _validated_list_payload(response.json(), error_detail)


async def _service_role_upsert(
    table: str,
    payload: dict[str, Any],
    *,
    conflict_columns: str,
) -> WriteResult:
    headers = supabase_service_role_headers()
    headers["Prefer"] = "resolution=merge-duplicates,return=minimal"

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                _rest_url(table),
                params={"on_conflict": conflict_columns},
                json=payload,
                headers=headers,
            )
    except httpx.HTTPError as exc:
        return _failed_write(table, sanitize_error(exc, default_message="datastore unreachable"))

    if response.status_code >= 400:
        return _failed_write(table, _supabase_error_detail(response) or f"HTTP {response.status_code}")
    return WriteResult(table=table, ok=True)


async def _service_role_patch(
    table: str,
    filters: dict[str, str],
    payload: dict[str, Any],
) -> WriteResult:
    headers = supabase_service_role_headers()
    headers["Prefer"] = "return=minimal"

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.patch(_rest_url(table), params=filters, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        return _failed_write(table, sanitize_error(exc, default_message="datastore unreachable"))

    if response.status_code >= 400:
        return _failed_write(table, _supabase_error_detail(response) or f"HTTP {response.status_code}")
    return WriteResult(table=table, ok=True)


def _failed_write(table: str, error: str) -> WriteResult:
    logger.error(
        "datastore.write_failed",
        extra={"component": "datastore", "table": table, "error": error},
    )
    return WriteResult(table=table, ok=False, error=error)


async def select_customer(customer_id: str) -> dict[str, Any] | None:
    rows = await _service_role_select(
        CUSTOMERS_TABLE,
        {"select": "customer_id,user_id,updated_at", "customer_id": f"eq.{customer_id}", "limit": "1"},
        error_detail="Failed to fetch customer record.",
    )
    return rows[0] if rows else None


async def select_customer_for_user(user_id: str) -> dict[str, Any] | None:
    rows = await _service_role_select(
        CUSTOMERS_TABLE,
        {
            "select": "customer_id,user_id,updated_at",
            "user_id": f"eq.{user_id}",
            "order": "updated_at.desc",
            "limit": "1",
        },
        error_detail="Failed to fetch customer record.",
    )
    return rows[0] if rows else None


async def select_subscription(customer_id: str, subscription_id: str) -> dict[str, Any] | None:
    rows = await _service_role_select(
        SUBSCRIPTIONS_TABLE,
        {
            "select": "*",
            "customer_id": f"eq.{customer_id}",
            "subscription_id": f"eq.{subscription_id}",
            "limit": "1",
        },
        error_detail="Failed to fetch subscription record.",
    )
    return rows[0] if rows else None


async def select_latest_subscription(customer_id: str) -> dict[str, Any] | None:
    rows = await _service_role_select(
        SUBSCRIPTIONS_TABLE,
        {
            "select": "*",
            "customer_id": f"eq.{customer_id}",
            "order": "updated_at.desc",
            "limit": "1",
        },
        error_detail="Failed to fetch subscription record.",
    )
    return rows[0] if rows else None


async def upsert_customer(customer_id: str, user_id: str | None = None) -> WriteResult:
    payload: dict[str, Any] = {"customer_id": customer_id, "updated_at": now_iso()}
    if user_id:
        payload["user_id"] = user_id
    return await _service_role_upsert(CUSTOMERS_TABLE, payload, conflict_columns="customer_id")


async def upsert_subscription(record: dict[str, Any]) -> WriteResult:
    payload = {key: value for key, value in record.items() if value is not None}
    payload["updated_at"] = now_iso()
    return await _service_role_upsert(
        SUBSCRIPTIONS_TABLE,
        payload,
        conflict_columns="customer_id,subscription_id",
    )


async def update_artist_tier(user_id: str, tier: str) -> WriteResult:
    return await _service_role_patch(
        ARTIST_PROFILES_TABLE,
        {"id": f"eq.{user_id}"},
        {"subscription_tier": tier, "updated_at": now_iso()},
    )


async def select_artist_profile(user_id: str) -> dict[str, Any] | None:
    rows = await _service_role_select(
        ARTIST_PROFILES_TABLE,
        {"select": ARTIST_PROFILE_COLUMNS, "id": f"eq.{user_id}", "limit": "1"},
        error_detail="Failed to fetch artist profile.",
    )
    return rows[0] if rows else None


async def update_artist_profile(user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    headers = supabase_service_role_headers()
    headers["Prefer"] = "return=representation"
    payload = {**fields, "updated_at": now_iso()}

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.patch(
                _rest_url(ARTIST_PROFILES_TABLE),
                params={"id": f"eq.{user_id}", "select": ARTIST_PROFILE_COLUMNS},
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to update artist profile.",
        ) from exc

    rows = _validated_list_payload(response.json(), "Invalid artist profile response.")
    return rows[0] if rows else None


async def select_user_email(user_id: str) -> str | None:
    settings = get_settings()
    url = f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1/admin/users/{user_id}"

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url, headers=supabase_service_role_headers())
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            "datastore.user_email_lookup_failed",
            extra={
                "component": "datastore",
                "user_id": user_id,
                "error": sanitize_error(exc, default_message="lookup failed"),
            },
        )
        return None

    payload = response.json()
    user = payload.get("user", payload) if isinstance(payload, dict) else None
    email = user.get("email") if isinstance(user, dict) else None
    return email if isinstance(email, str) and email else None


async def select_user_display_name(user_id: str) -> str | None:
    try:
        rows = await _service_role_select(
            PROFILES_TABLE,
            {"select": "username,artist_name", "id": f"eq.{user_id}", "limit": "1"},
            error_detail="Failed to fetch profile.",
        )
    except HTTPException as exc:
        logger.warning(
            "datastore.display_name_lookup_failed",
            extra={"component": "datastore", "user_id": user_id, "error": exc.detail},
        )
        return None

    if not rows:
        return None
    row = rows[0]
    for key in ("artist_name", "username"):
        value = row.get(key)
        if isinstance(value, str) and value:
            return value
    return None
