"""Schemas for media library, plays, likes and stream endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MediaItemResponse(BaseModel):
    id: str
    user_id: str
    track_id: Optional[str]
    title: Optional[str]
    prompt: Optional[str]
    genre: Optional[str]
    generation_type: str
    media_type: str
    status: str
    audio_url: Optional[str]
    image_url: Optional[str]
    video_url: Optional[str]
    plays: int
    likes: int
    is_public: bool
    credits_cost: int
    error_message: Optional[str] = None
    created_at: datetime


class MediaListResponse(BaseModel):
    items: list[MediaItemResponse]
    total: int
    limit: int
    offset: int


class MediaIdRequest(BaseModel):
    mediaId: Optional[str] = Field(default=None, max_length=36)


class TrackPlayResponse(BaseModel):
    success: bool
    plays: int
    message: Optional[str] = None


class LikeResponse(BaseModel):
    liked: bool
    likes: int


class MediaUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    genre: Optional[str] = Field(default=None, max_length=40)
    is_public: Optional[bool] = None


class MediaDeleteResponse(BaseModel):
    success: bool
    id: str


class StreamUrlResponse(BaseModel):
    url: str
    expires_at: int
