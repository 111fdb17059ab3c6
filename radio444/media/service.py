"""Media library queries, play counting and likes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from radio444.core.logger import get_logger
from radio444.core.metrics import record_play
from radio444.generation.states import MEDIA_STATUS_READY
from radio444.schemas.media import MediaItemResponse
from radio444.storage.models import MediaItem, MediaLike
from radio444.storage.objects import ObjectStorageError, get_object_storage


logger = get_logger("radio444.media")


def to_media_response(media: MediaItem) -> MediaItemResponse:
    return MediaItemResponse(
        id=media.id,
        user_id=media.user_id,
        track_id=media.track_id,
        title=media.title,
        prompt=media.prompt,
        genre=media.genre,
        generation_type=media.generation_type,
        media_type=media.media_type,
        status=media.status,
        audio_url=media.audio_url,
        image_url=media.image_url,
        video_url=media.video_url,
        plays=media.plays,
        likes=media.likes,
        is_public=media.is_public,
        credits_cost=media.credits_cost,
        error_message=media.error_message,
        created_at=media.created_at,
    )


def list_public_tracks(
    session: Session,
    *,
    user_id: Optional[str] = None,
    genre: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[MediaItem], int]:
    filters = [MediaItem.is_public.is_(True), MediaItem.status == MEDIA_STATUS_READY]
    if user_id:
        filters.append(MediaItem.user_id == user_id)
    if genre:
        filters.append(func.lower(MediaItem.genre) == genre.strip().lower())

    total = int(session.scalar(select(func.count(MediaItem.id)).where(*filters)) or 0)
    items = session.scalars(
        select(MediaItem)
        .where(*filters)
        .order_by(MediaItem.created_at.desc(), MediaItem.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return list(items), total


def list_library(session: Session, *, user_id: str, limit: int = 50, offset: int = 0) -> tuple[list[MediaItem], int]:
    total = int(session.scalar(select(func.count(MediaItem.id)).where(MediaItem.user_id == user_id)) or 0)
    items = session.scalars(
        select(MediaItem)
        .where(MediaItem.user_id == user_id)
        .order_by(MediaItem.created_at.desc(), MediaItem.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return list(items), total


def record_track_play(session: Session, *, media: MediaItem, listener_id: str) -> tuple[int, bool]:
    """Increment plays atomically unless the listener owns the track.

    Returns ``(plays, counted)``.
    """

    if listener_id == media.user_id:
        return media.plays, False

    session.execute(
        update(MediaItem)
        .where(MediaItem.id == media.id)
        .values(plays=MediaItem.plays + 1)
        .execution_options(synchronize_session="fetch")
    )
    session.commit()
    record_play()
    plays = session.scalar(select(MediaItem.plays).where(MediaItem.id == media.id))
    return int(plays or 0), True


def _recount_likes(session: Session, *, media_id: str) -> int:
    count = int(session.scalar(select(func.count(MediaLike.id)).where(MediaLike.media_id == media_id)) or 0)
    session.execute(
        update(MediaItem)
        .where(MediaItem.id == media_id)
        .values(likes=count)
        .execution_options(synchronize_session="fetch")
    )
    return count


def is_liked(session: Session, *, user_id: str, media_id: str) -> bool:
    existing = session.scalar(
        select(MediaLike.id).where(MediaLike.user_id == user_id, MediaLike.media_id == media_id)
    )
    return existing is not None


def toggle_like(session: Session, *, user_id: str, media_id: str) -> tuple[bool, int]:
    """Flip the caller's like; the counter is recomputed from the like rows."""

    if is_liked(session, user_id=user_id, media_id=media_id):
        session.execute(delete(MediaLike).where(MediaLike.user_id == user_id, MediaLike.media_id == media_id))
        liked = False
    else:
        try:
            with session.begin_nested():
                session.add(MediaLike(user_id=user_id, media_id=media_id))
        except IntegrityError:
            # Concurrent duplicate like.
            logger.info("media_like_duplicate", media_id=media_id)
        liked = True

    count = _recount_likes(session, media_id=media_id)
    session.commit()
    return liked, count


def update_media(
    session: Session,
    *,
    media: MediaItem,
    title: Optional[str] = None,
    genre: Optional[str] = None,
    is_public: Optional[bool] = None,
) -> MediaItem:
    if title is not None:
        media.title = title.strip()
    if genre is not None:
        media.genre = genre.strip() or None
    if is_public is not None:
        media.is_public = is_public
    media.updated_at = datetime.now(timezone.utc)
    session.commit()
    return media


def delete_media(session: Session, *, media: MediaItem) -> None:
    media_id = media.id
    storage_key = media.storage_key
    session.delete(media)
    session.commit()

    storage = get_object_storage()
    if storage is not None and storage_key:
        try:
            storage.delete(storage_key)
        except ObjectStorageError as exc:
            logger.warning("media_object_delete_failed", key=storage_key, error=str(exc))
    logger.info("media_deleted", media_id=media_id)
