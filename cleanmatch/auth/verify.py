"""
verify.py
---------
Purpose:
    Identity and admin-role checks on top of Supabase JWTs.

Notes:
    - Tokens are verified against the Supabase JWKS (ES256).
    - An actor is an admin when its app_metadata role is "admin" or its
      e-mail is on the ADMIN_EMAILS allow-list.
    - `auth_dependency` resolves the caller for FastAPI routes.
"""

from dataclasses import dataclass, field
from typing import Any

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from cleanmatch.config import settings
from cleanmatch.errors import PermissionDeniedError, UnauthenticatedError

SUPABASE_AUDIENCE = "authenticated"
ADMIN_ROLE = "admin"

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller of a business operation."""

    uid: str
    email: str | None = None
    role: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Actor":
        uid = claims.get("sub")
        if not uid:
            raise UnauthenticatedError("Token has no subject")
        app_metadata = claims.get("app_metadata") or {}
        return cls(
            uid=uid,
            email=claims.get("email"),
            role=app_metadata.get("role"),
            claims=claims,
        )


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
    except jwt.PyJWTError as e:
        raise UnauthenticatedError(f"Invalid authentication token: {e}") from e


def require_actor(actor: Actor | None) -> Actor:
    """Raise UnauthenticatedError unless a caller identity is present."""
    if actor is None or not actor.uid:
        raise UnauthenticatedError("Authentication required")
    return actor


def is_admin(actor: Actor | None) -> bool:
    if actor is None:
        return False
    if actor.role == ADMIN_ROLE:
        return True
    return bool(actor.email) and actor.email.lower() in settings.admin_emails()


def require_admin(actor: Actor | None) -> Actor:
    actor = require_actor(actor)
    if not is_admin(actor):
        raise PermissionDeniedError("Admin privileges required")
    return actor


def auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> Actor:
    if credentials is None:
        raise UnauthenticatedError("Missing bearer token")
    return Actor.from_claims(verify_jwt(credentials.credentials))
