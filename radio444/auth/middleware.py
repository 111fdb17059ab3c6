"""Authentication middleware helpers."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from radio444.auth.jwt import AuthContext, decode_access_token
from radio444.auth.plugin_tokens import PLUGIN_TOKEN_PREFIX
from radio444.core.config import get_settings


AUTH_CONTEXT_KEY = "auth_context"


def extract_bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def _extract_session_token(request: Request) -> Optional[str]:
    token = extract_bearer_token(request)
    if token and not token.startswith(PLUGIN_TOKEN_PREFIX):
        return token
    cookie_name = get_settings().auth_session_cookie_name
    return request.cookies.get(cookie_name) or None


def resolve_request_auth_context(request: Request) -> Optional[AuthContext]:
    token = _extract_session_token(request)
    if not token:
        return None

    try:
        return decode_access_token(token)
    except Exception:
        return None
