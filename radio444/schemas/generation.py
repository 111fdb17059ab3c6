"""Schemas for generation endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class GenerationAcceptedResponse(BaseModel):
    success: bool
    media_id: str
    track_id: Optional[str]
    status: str
    generation_type: str
    credits_cost: int
    credits_remaining: int


class GenerationStatusResponse(BaseModel):
    media_id: str
    status: str
    generation_type: str
    media_type: str
    title: Optional[str]
    audio_url: Optional[str]
    image_url: Optional[str]
    video_url: Optional[str]
    error_message: Optional[str]


class GenerationWebhookResponse(BaseModel):
    status: str
    matched: bool
