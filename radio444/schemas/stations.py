"""Schemas for live station and realtime relay endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class StationResponse(BaseModel):
    id: str
    user_id: str
    username: Optional[str]
    title: str
    description: Optional[str]
    is_live: bool
    listener_count: int
    current_track_id: Optional[str]
    current_track_title: Optional[str]
    current_track_image: Optional[str]
    started_at: Optional[datetime]
    last_live_at: Optional[datetime]
    channel: str


class StationListResponse(BaseModel):
    stations: list[StationResponse]


class CurrentTrack(BaseModel):
    id: Optional[str] = Field(default=None, max_length=36)
    title: Optional[str] = Field(default=None, max_length=100)
    image_url: Optional[str] = Field(default=None, max_length=1000)


class StationUpdateRequest(BaseModel):
    is_live: bool
    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    current_track: Optional[CurrentTrack] = None


class StationSignalRequest(BaseModel):
    signal: Any
    to: Optional[str] = Field(default=None, max_length=64)
    type: Literal["host", "viewer"]


class StationMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=500)


class StationReactionRequest(BaseModel):
    emoji: str = Field(min_length=1, max_length=16)


class RelayResponse(BaseModel):
    success: bool
    delivered: bool


class RealtimeWebhookResponse(BaseModel):
    processed: int
