"""FastAPI dependencies for session auth, plugin auth and per-user rate limits."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from radio444.auth.jwt import AuthContext
from radio444.auth.middleware import AUTH_CONTEXT_KEY, extract_bearer_token
from radio444.auth.plugin_tokens import PluginAuthError, PluginAuthResult, authenticate_plugin_token
from radio444.core.metrics import record_rate_limit_block
from radio444.core.rate_limit import get_rate_limiter, rate_limit_headers
from radio444.storage.db import get_session


def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, AUTH_CONTEXT_KEY, None)


def require_auth_context(auth: Optional[AuthContext] = Depends(get_optional_auth_context)) -> AuthContext:
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return auth


def require_rate_limited_user(scope: str) -> Callable[[AuthContext], AuthContext]:
    """Authenticated caller, throttled per user within ``scope``."""

    def dependency(auth: AuthContext = Depends(require_auth_context)) -> AuthContext:
        decision = get_rate_limiter(scope).check(identifier=auth.user_id)
        if not decision.allowed:
            record_rate_limit_block(kind=scope)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Try again later.",
                headers=rate_limit_headers(decision),
            )
        return auth

    return dependency


def require_plugin_auth(request: Request, session: Session = Depends(get_session)) -> PluginAuthResult:
    try:
        return authenticate_plugin_token(session, extract_bearer_token(request))
    except PluginAuthError as exc:
        if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
            record_rate_limit_block(kind="plugin")
        headers = {"x-plugin-access-tier": exc.access_tier} if exc.access_tier else None
        raise HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers) from exc
