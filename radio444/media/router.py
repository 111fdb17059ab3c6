"""Media listing, play counting, likes, edits and signed stream URLs."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from radio444.auth.dependencies import get_optional_auth_context, require_auth_context
from radio444.auth.jwt import AuthContext
from radio444.core.config import get_settings
from radio444.media.service import (
    delete_media,
    is_liked,
    list_library,
    list_public_tracks,
    record_track_play,
    to_media_response,
    toggle_like,
    update_media,
)
from radio444.media.signing import signed_audio_url_for
from radio444.schemas.media import (
    LikeResponse,
    MediaDeleteResponse,
    MediaIdRequest,
    MediaItemResponse,
    MediaListResponse,
    MediaUpdateRequest,
    StreamUrlResponse,
    TrackPlayResponse,
)
from radio444.storage.db import get_session
from radio444.storage.models import MediaItem


router = APIRouter(prefix="/media", tags=["media"])


def _get_media(session: Session, media_id: Optional[str]) -> MediaItem:
    if not media_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="mediaId is required")
    media = session.get(MediaItem, media_id)
    if media is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    return media


def _get_owned_media(session: Session, media_id: str, auth: AuthContext) -> MediaItem:
    media = _get_media(session, media_id)
    if media.user_id != auth.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this media")
    return media


@router.get("/tracks", response_model=MediaListResponse)
def list_tracks(
    user_id: Optional[str] = Query(default=None, max_length=64),
    genre: Optional[str] = Query(default=None, max_length=40),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
) -> MediaListResponse:
    items, total = list_public_tracks(session, user_id=user_id, genre=genre, limit=limit, offset=offset)
    return MediaListResponse(
        items=[to_media_response(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/library", response_model=MediaListResponse)
def library(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> MediaListResponse:
    items, total = list_library(session, user_id=auth.user_id, limit=limit, offset=offset)
    return MediaListResponse(
        items=[to_media_response(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/track-play", response_model=TrackPlayResponse)
def track_play(
    payload: MediaIdRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> TrackPlayResponse:
    media = _get_media(session, payload.mediaId)
    plays, counted = record_track_play(session, media=media, listener_id=auth.user_id)
    if not counted:
        return TrackPlayResponse(success=True, plays=plays, message="Artist plays don't count")
    return TrackPlayResponse(success=True, plays=plays)


@router.post("/like", response_model=LikeResponse)
def like_media(
    payload: MediaIdRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> LikeResponse:
    media = _get_media(session, payload.mediaId)
    liked, likes = toggle_like(session, user_id=auth.user_id, media_id=media.id)
    return LikeResponse(liked=liked, likes=likes)


@router.get("/like", response_model=LikeResponse)
def like_status(
    media_id: Optional[str] = Query(default=None, alias="mediaId", max_length=36),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> LikeResponse:
    media = _get_media(session, media_id)
    return LikeResponse(liked=is_liked(session, user_id=auth.user_id, media_id=media.id), likes=media.likes)


@router.patch("/{media_id}", response_model=MediaItemResponse)
def edit_media(
    media_id: str,
    payload: MediaUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> MediaItemResponse:
    media = _get_owned_media(session, media_id, auth)
    update_media(session, media=media, title=payload.title, genre=payload.genre, is_public=payload.is_public)
    return to_media_response(media)


@router.delete("/{media_id}", response_model=MediaDeleteResponse)
def remove_media(
    media_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> MediaDeleteResponse:
    media = _get_owned_media(session, media_id, auth)
    delete_media(session, media=media)
    return MediaDeleteResponse(success=True, id=media_id)


@router.get("/{media_id}/stream-url", response_model=StreamUrlResponse)
def stream_url(
    media_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> StreamUrlResponse:
    media = _get_media(session, media_id)
    is_owner = auth is not None and auth.user_id == media.user_id
    if not media.is_public and not is_owner:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    if not media.storage_key:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media has no stored audio")

    settings = get_settings()
    if not settings.audio_signing_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Audio signing is not configured")
    url, expiry = signed_audio_url_for(
        worker_base=settings.audio_worker_base_url,
        key=media.storage_key,
        secret=settings.audio_signing_secret,
        ttl_seconds=settings.audio_signed_url_ttl_seconds,
    )
    return StreamUrlResponse(url=url, expires_at=expiry)
