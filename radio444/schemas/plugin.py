"""Schemas for DAW plugin token, job and access endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PluginTokenItem(BaseModel):
    id: str
    name: str
    token_prefix: str
    is_active: bool
    last_used_at: Optional[datetime]
    expires_at: Optional[datetime]
    created_at: datetime


class PluginTokenListResponse(BaseModel):
    tokens: list[PluginTokenItem]


class PluginTokenCreateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=80)


class PluginTokenCreateResponse(BaseModel):
    id: str
    name: str
    token: str
    token_prefix: str
    expires_at: Optional[datetime]
    message: str


class PluginTokenRevokeResponse(BaseModel):
    success: bool
    id: str


class PluginGenerateResponse(BaseModel):
    success: bool
    job_id: str
    status: str
    generation_type: str
    credits_cost: int


class PluginJobResponse(BaseModel):
    id: str
    type: str
    status: str
    credits_cost: int
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    media_id: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class PluginCancelRequest(BaseModel):
    jobId: Optional[str] = Field(default=None, max_length=36)
    predictionId: Optional[str] = Field(default=None, max_length=128)


class PluginCancelResponse(BaseModel):
    success: bool
    cancelled: bool
    job_id: Optional[str] = None
    status: Optional[str] = None


class PluginAccessResponse(BaseModel):
    access_tier: str
    has_access: bool
    credits: int
    subscription_plan: Optional[str]
    subscription_status: str
    message: str
