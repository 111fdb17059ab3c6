"""Profile sync, profile edits and the follow graph."""

from __future__ import annotations

from datetime import datetime, timezone
import re
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from radio444.core.logger import get_logger
from radio444.generation.states import MEDIA_STATUS_READY
from radio444.storage.models import MediaItem, User, UserFollow


USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,30}$")

logger = get_logger("radio444.users")


class UsernameTakenError(ValueError):
    """Raised when a requested username belongs to another user."""


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _primary_email(data: Dict[str, Any]) -> Optional[str]:
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    for address in addresses:
        if isinstance(address, dict) and (primary_id is None or address.get("id") == primary_id):
            return address.get("email_address")
    return None


def _full_name(data: Dict[str, Any]) -> Optional[str]:
    parts = [str(data.get(key) or "").strip() for key in ("first_name", "last_name")]
    name = " ".join(part for part in parts if part)
    return name[:120] or None


def _available_username(session: Session, candidate: Any, *, user_id: str) -> Optional[str]:
    if not isinstance(candidate, str) or not USERNAME_PATTERN.match(candidate):
        return None
    owner = session.scalar(select(User.id).where(User.username == candidate))
    if owner is not None and owner != user_id:
        return None
    return candidate


def upsert_user_from_auth(session: Session, data: Dict[str, Any]) -> User:
    """Create or refresh a user from an auth-provider payload; new users get 0 credits."""

    user_id = str(data.get("id") or "").strip()
    if not user_id:
        raise ValueError("Auth payload is missing the user id")

    user = session.get(User, user_id)
    created = user is None
    if user is None:
        user = User(id=user_id, credits=0)
        session.add(user)

    user.email = _primary_email(data) or user.email
    user.full_name = _full_name(data) or user.full_name
    user.avatar_url = data.get("image_url") or user.avatar_url
    username = _available_username(session, data.get("username"), user_id=user_id)
    if username:
        user.username = username
    user.updated_at = _now_utc()
    session.commit()
    logger.info("user_synced", synced_user_id=user_id, created=created)
    return user


def delete_user(session: Session, *, user_id: str) -> bool:
    user = session.get(User, user_id)
    if user is None:
        return False
    session.delete(user)
    session.commit()
    logger.info("user_deleted", deleted_user_id=user_id)
    return True


def update_profile(
    session: Session,
    *,
    user: User,
    username: Optional[str] = None,
    full_name: Optional[str] = None,
    bio: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> User:
    if username is not None and username != user.username:
        owner = session.scalar(select(User.id).where(User.username == username))
        if owner is not None and owner != user.id:
            raise UsernameTakenError("Username is already taken")
        user.username = username
    if full_name is not None:
        user.full_name = full_name.strip() or None
    if bio is not None:
        user.bio = bio.strip() or None
    if avatar_url is not None:
        user.avatar_url = avatar_url.strip() or None
    user.updated_at = _now_utc()
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise UsernameTakenError("Username is already taken") from exc
    return user


def follow_counts(session: Session, *, user_id: str) -> tuple[int, int]:
    followers = session.scalar(select(func.count(UserFollow.id)).where(UserFollow.following_id == user_id))
    following = session.scalar(select(func.count(UserFollow.id)).where(UserFollow.follower_id == user_id))
    return int(followers or 0), int(following or 0)


def public_track_count(session: Session, *, user_id: str) -> int:
    count = session.scalar(
        select(func.count(MediaItem.id)).where(
            MediaItem.user_id == user_id,
            MediaItem.is_public.is_(True),
            MediaItem.status == MEDIA_STATUS_READY,
        )
    )
    return int(count or 0)


def is_following(session: Session, *, follower_id: str, following_id: str) -> bool:
    existing = session.scalar(
        select(UserFollow.id).where(
            UserFollow.follower_id == follower_id,
            UserFollow.following_id == following_id,
        )
    )
    return existing is not None


def follow_user(session: Session, *, follower_id: str, following_id: str) -> None:
    if follower_id == following_id:
        raise ValueError("You cannot follow yourself")
    if is_following(session, follower_id=follower_id, following_id=following_id):
        return
    session.add(UserFollow(follower_id=follower_id, following_id=following_id))
    try:
        session.commit()
    except IntegrityError:
        session.rollback()


def unfollow_user(session: Session, *, follower_id: str, following_id: str) -> None:
    session.execute(
        delete(UserFollow).where(
            UserFollow.follower_id == follower_id,
            UserFollow.following_id == following_id,
        )
    )
    session.commit()
