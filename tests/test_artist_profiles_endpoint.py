from typing import Any

from fastapi.testclient import TestClient

from kapsule.api.v1.endpoints import artist_profiles as artist_profiles_endpoint
from kapsule.core.supabase_jwt import VerifiedSupabaseAuth, verify_supabase_auth
from kapsule.main import app

PROFILE = {
    "id": "user-1",
    "artist_name": "DJ Test",
    "username": "djtest",
    "bio": "Beats",
    "genre": "House",
    "profile_image_url": None,
    "subscription_tier": "pro",
    "updated_at": "2026-01-01T00:00:00Z",
}


def _as_user() -> None:
    app.dependency_overrides[verify_supabase_auth] = lambda: VerifiedSupabaseAuth(
        access_token="token-123",
        claims={"sub": "user-1"},
    )


def test_profile_requires_token() -> None:
    client = TestClient(app)
    response = client.get("/api/v1/artist-profiles/me")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_get_profile(monkeypatch) -> None:
    async def fake_select(user_id: str) -> dict[str, Any] | None:
        assert user_id == "user-1"
        return PROFILE

    monkeypatch.setattr(artist_profiles_endpoint, "select_artist_profile", fake_select)
    _as_user()
    try:
        client = TestClient(app)
        response = client.get("/api/v1/artist-profiles/me")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["artist_name"] == "DJ Test"
    assert body["subscription_tier"] == "pro"


def test_get_profile_not_found(monkeypatch) -> None:
    async def fake_select(user_id: str) -> dict[str, Any] | None:
        return None

    monkeypatch.setattr(artist_profiles_endpoint, "select_artist_profile", fake_select)
    _as_user()
    try:
        client = TestClient(app)
        response = client.get("/api/v1/artist-profiles/me")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404


def test_patch_profile_updates_editor_fields(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    async def fake_update(user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        captured.update(fields)
        return {**PROFILE, **fields}

    monkeypatch.setattr(artist_profiles_endpoint, "update_artist_profile", fake_update)
    _as_user()
    try:
        client = TestClient(app)
        response = client.patch("/api/v1/artist-profiles/me", json={"bio": "New bio", "genre": "Techno"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert captured == {"bio": "New bio", "genre": "Techno"}
    assert response.json()["genre"] == "Techno"


def test_patch_profile_rejects_tier_changes(monkeypatch) -> None:
    async def fake_update(user_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        raise AssertionError("tier must not be writable")

    monkeypatch.setattr(artist_profiles_endpoint, "update_artist_profile", fake_update)
    _as_user()
    try:
        client = TestClient(app)
        response = client.patch("/api/v1/artist-profiles/me", json={"subscription_tier": "pro"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"
