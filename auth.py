"""
FastAPI JWT authentication dependency powered by Supabase.

Protected routes declare `user: CurrentUser = Depends(get_current_user)`.
The rest of the application only needs to know who the current owner is,
so the token claims are reduced to a `CurrentUser` (id, email, name, picture).

Required environment variables (set in .env):
    SUPABASE_JWT_SECRET  –  Project Settings → API → JWT Settings → JWT Secret
    SUPABASE_URL         –  Project Settings → API → Project URL
                           (required when Supabase issues RS256-signed tokens)
"""

from __future__ import annotations

import os
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from errors import AuthError

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

SUPABASE_JWT_SECRET: str = os.environ.get("SUPABASE_JWT_SECRET", "")
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "").rstrip("/")

_bearer = HTTPBearer(auto_error=False)

# Lazy-initialised JWKS client (only used for RS256 / asymmetric tokens)
_jwks_client: Optional[jwt.PyJWKClient] = None


class CurrentUser(BaseModel):
    id: str
    email: str = ""
    name: str = ""
    picture: Optional[str] = None


def _get_jwks_client() -> Optional[jwt.PyJWKClient]:
    global _jwks_client
    if _jwks_client is None and SUPABASE_URL:
        _jwks_client = jwt.PyJWKClient(
            f"{SUPABASE_URL}/auth/v1/.well-known/jwks.json",
            cache_keys=True,
        )
    return _jwks_client


def decode_supabase_token(token: str) -> dict:
    """
    Decode and validate a Supabase JWT regardless of whether it is HS256 or
    RS256-signed.  Raises jwt.InvalidTokenError (or a subclass) on failure.
    """
    header = jwt.get_unverified_header(token)
    alg = header.get("alg", "HS256")

    if alg == "HS256":
        if not SUPABASE_JWT_SECRET:
            raise jwt.InvalidTokenError(
                "SUPABASE_JWT_SECRET is not set — cannot validate HS256 token."
            )
        return jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )

    client = _get_jwks_client()
    if client is None:
        raise jwt.InvalidTokenError(
            f"Token uses {alg} but SUPABASE_URL is not set — "
            "cannot fetch JWKS to verify asymmetric token."
        )
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=[alg],
        options={"verify_aud": False},
    )


def user_from_claims(claims: dict) -> CurrentUser:
    subject = claims.get("sub")
    if not subject:
        raise AuthError("Token has no subject claim.")
    meta = claims.get("user_metadata") or {}
    email = claims.get("email") or meta.get("email") or ""
    return CurrentUser(
        id=str(subject),
        email=email,
        name=meta.get("full_name") or meta.get("name") or email,
        picture=meta.get("avatar_url") or meta.get("picture"),
    )


def authenticate(token: str) -> CurrentUser:
    try:
        claims = decode_supabase_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError(f"Invalid token: {exc}") from exc
    return user_from_claims(claims)


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CurrentUser:
    """Resolve the Bearer token to the current user; AuthError becomes HTTP 401."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("Missing or invalid Authorization header.")
    return authenticate(credentials.credentials)
