"""Plugin bearer tokens: issuance, storage and access-tier resolution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import secrets
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from radio444.core.config import get_settings
from radio444.core.logger import get_logger
from radio444.core.rate_limit import RateLimiter, get_rate_limiter
from radio444.storage.models import PluginToken, User


PLUGIN_TOKEN_PREFIX = "444r_"
MIN_TOKEN_LENGTH = 32
DEFAULT_TOKEN_NAME = "Ableton Plugin"

ACCESS_TIER_STUDIO = "studio"
ACCESS_TIER_PRO = "pro"
ACCESS_TIER_PURCHASED = "purchased"
ACCESS_TIER_DENIED_INACTIVE = "denied_inactive"
ACCESS_TIER_DENIED_NO_PURCHASE = "denied_no_purchase"

_SUBSCRIPTION_TIERS = {ACCESS_TIER_STUDIO, ACCESS_TIER_PRO}

logger = get_logger("radio444.auth.plugin_tokens")


class PluginAuthError(Exception):
    def __init__(self, status_code: int, message: str, access_tier: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.access_tier = access_tier


class PluginTokenLimitError(ValueError):
    """Raised when a user already holds the maximum number of active tokens."""


@dataclass(frozen=True)
class PluginAuthResult:
    user_id: str
    token_id: str
    access_tier: str


@dataclass(frozen=True)
class IssuedPluginToken:
    id: str
    name: str
    token: str
    token_prefix: str
    expires_at: Optional[datetime]


def generate_plugin_token() -> str:
    return PLUGIN_TOKEN_PREFIX + secrets.token_hex(32)


def hash_plugin_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_access_tier(user: User) -> str:
    plan = (user.subscription_plan or "").strip().lower()
    subscription_active = (user.subscription_status or "").strip().lower() == "active"

    if subscription_active and plan in _SUBSCRIPTION_TIERS:
        return plan
    if user.plugin_purchased:
        return ACCESS_TIER_PURCHASED
    if plan in _SUBSCRIPTION_TIERS:
        return ACCESS_TIER_DENIED_INACTIVE
    return ACCESS_TIER_DENIED_NO_PURCHASE


def find_active_token(session: Session, raw_token: Optional[str], *, now: Optional[datetime] = None) -> PluginToken:
    """Resolve a raw token to its active, unexpired record or raise a 401 ``PluginAuthError``."""

    token = (raw_token or "").strip()
    if len(token) < MIN_TOKEN_LENGTH:
        raise PluginAuthError(401, "Missing or invalid plugin token")

    record = session.scalar(select(PluginToken).where(PluginToken.token_hash == hash_plugin_token(token)))
    if record is None:
        raise PluginAuthError(401, "Invalid plugin token")
    if not record.is_active:
        raise PluginAuthError(401, "Plugin token has been revoked")

    expires_at = _as_utc(record.expires_at)
    if expires_at is not None and expires_at <= (now or datetime.now(timezone.utc)):
        raise PluginAuthError(401, "Plugin token has expired")
    return record


def authenticate_plugin_token(
    session: Session,
    raw_token: Optional[str],
    *,
    now: Optional[datetime] = None,
    limiter: Optional[RateLimiter] = None,
) -> PluginAuthResult:
    current_time = now or datetime.now(timezone.utc)
    record = find_active_token(session, raw_token, now=current_time)

    decision = (limiter or get_rate_limiter("plugin")).check(identifier=record.id)
    if not decision.allowed:
        raise PluginAuthError(429, "Rate limit exceeded. Try again later.")

    user = session.get(User, record.user_id)
    if user is None:
        raise PluginAuthError(401, "Invalid plugin token")

    access_tier = resolve_access_tier(user)
    if access_tier == ACCESS_TIER_DENIED_INACTIVE:
        raise PluginAuthError(403, "Your subscription is inactive. Renew to use the plugin.", access_tier)
    if access_tier == ACCESS_TIER_DENIED_NO_PURCHASE:
        raise PluginAuthError(
            403,
            "Plugin access requires a plugin purchase or a Pro/Studio subscription.",
            access_tier,
        )

    record.last_used_at = current_time
    session.commit()
    return PluginAuthResult(user_id=record.user_id, token_id=record.id, access_tier=access_tier)


def list_plugin_tokens(session: Session, *, user_id: str) -> list[PluginToken]:
    statement = (
        select(PluginToken)
        .where(PluginToken.user_id == user_id)
        .order_by(PluginToken.created_at.desc())
    )
    return list(session.scalars(statement).all())


def create_plugin_token(session: Session, *, user_id: str, name: Optional[str] = None) -> IssuedPluginToken:
    """Issue a token; the raw value is returned once and only its hash is stored."""

    settings = get_settings()
    active_count = session.scalar(
        select(func.count(PluginToken.id)).where(
            PluginToken.user_id == user_id,
            PluginToken.is_active.is_(True),
        )
    )
    if int(active_count or 0) >= settings.plugin_token_max_active:
        raise PluginTokenLimitError(
            f"Maximum {settings.plugin_token_max_active} active tokens. Revoke an existing token first."
        )

    token = generate_plugin_token()
    expires_at = datetime.now(timezone.utc) + timedelta(days=settings.plugin_token_ttl_days)
    record = PluginToken(
        user_id=user_id,
        name=(name or "").strip()[:80] or DEFAULT_TOKEN_NAME,
        token_prefix=token[:12],
        token_hash=hash_plugin_token(token),
        is_active=True,
        expires_at=expires_at,
    )
    session.add(record)
    session.commit()
    logger.info("plugin_token_created", token_id=record.id)
    return IssuedPluginToken(
        id=record.id,
        name=record.name,
        token=token,
        token_prefix=record.token_prefix,
        expires_at=expires_at,
    )


def revoke_plugin_token(session: Session, *, user_id: str, token_id: str) -> bool:
    record = session.scalar(
        select(PluginToken).where(
            PluginToken.id == token_id,
            PluginToken.user_id == user_id,
        )
    )
    if record is None:
        return False
    record.is_active = False
    session.commit()
    logger.info("plugin_token_revoked", token_id=token_id)
    return True
