from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import jwt
from fastapi import Header, HTTPException, status
from jwt import PyJWKClient
from jwt.exceptions import InvalidTokenError, PyJWKClientError

from kapsule.core.logging import get_logger
from kapsule.core.settings import get_settings

SIGNING_ALGORITHMS = ["RS256", "ES256"]

logger = get_logger("core.auth")


@dataclass(frozen=True)
class VerifiedSupabaseAuth:
    """A verified datastore session; ``claims["sub"]`` is the artist's user id."""

    access_token: str
    claims: dict[str, Any]

    @property
    def user_id(self) -> str:
        subject = self.claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise _unauthorized()
        return subject


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url)


def bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized()
    return token


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        signing_key = _jwks_client(settings.SUPABASE_JWKS_URL).get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=SIGNING_ALGORITHMS,
            issuer=settings.SUPABASE_ISSUER,
            options={"verify_aud": False},
        )
    except (InvalidTokenError, PyJWKClientError, ValueError) as exc:
        logger.info("auth.token_rejected", extra={"component": "auth", "error_type": type(exc).__name__})
        raise _unauthorized() from None

    if not isinstance(claims, dict) or not claims.get("sub"):
        raise _unauthorized()
    return claims


def verify_supabase_auth(authorization: str | None = Header(default=None)) -> VerifiedSupabaseAuth:
    token = bearer_token(authorization)
    return VerifiedSupabaseAuth(access_token=token, claims=decode_access_token(token))
