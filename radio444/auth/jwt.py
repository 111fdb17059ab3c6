"""Session JWT issue/verify primitives.

Sessions are minted by the external auth provider. In production they are
verified against the provider's JWKS endpoint (RS256); locally and in tests
they are HS256 tokens signed with ``SECRET_KEY``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, status

from radio444.core.config import get_settings


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    session_id: Optional[str] = None
    email: str = ""


@lru_cache(maxsize=4)
def get_jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url, cache_keys=True)


def create_access_token(context: AuthContext) -> tuple[str, int]:
    settings = get_settings()
    expires_in = settings.access_token_exp_minutes * 60
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": context.user_id,
        "sid": context.session_id,
        "email": context.email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    if settings.auth_issuer:
        payload["iss"] = settings.auth_issuer
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, expires_in


def _decode_claims(token: str) -> Dict[str, Any]:
    settings = get_settings()
    options = {"require": ["exp", "sub"]}
    issuer = settings.auth_issuer or None

    if settings.auth_jwks_url:
        signing_key = get_jwks_client(settings.auth_jwks_url).get_signing_key_from_jwt(token)
        return jwt.decode(token, signing_key.key, algorithms=["RS256"], issuer=issuer, options=options)

    if not settings.secret_key:
        raise jwt.InvalidTokenError("session secret is not configured")
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        issuer=issuer,
        options=options,
    )


def decode_access_token(token: str) -> AuthContext:
    try:
        payload = _decode_claims(token)
        return AuthContext(
            user_id=str(payload["sub"]),
            session_id=str(payload["sid"]) if payload.get("sid") else None,
            email=str(payload.get("email") or ""),
        )
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc
