"""Schemas for profile, follow and auth-webhook endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class UserProfileResponse(BaseModel):
    id: str
    email: Optional[str]
    username: Optional[str]
    full_name: Optional[str]
    avatar_url: Optional[str]
    bio: Optional[str]
    credits: int
    wallet_balance: Decimal
    total_generated: int
    subscription_plan: Optional[str]
    subscription_status: str
    plugin_purchased: bool
    created_at: datetime


class UserUpdateRequest(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    full_name: Optional[str] = Field(default=None, max_length=120)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar_url: Optional[str] = Field(default=None, max_length=500)


class PublicProfileResponse(BaseModel):
    id: str
    username: Optional[str]
    full_name: Optional[str]
    avatar_url: Optional[str]
    bio: Optional[str]
    followers: int
    following: int
    tracks: int
    is_following: bool
    created_at: datetime


class FollowResponse(BaseModel):
    following: bool
    followers: int


class AuthWebhookResponse(BaseModel):
    status: str
    event_type: str
    user_id: Optional[str] = None
