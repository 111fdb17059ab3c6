"""Schemas for the per-user generation chat transcript."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ChatMessageIn(BaseModel):
    type: Optional[str] = Field(default=None, max_length=24)
    content: Optional[str] = Field(default=None, max_length=10000)
    generation_type: Optional[str] = Field(default=None, max_length=32)
    generation_id: Optional[str] = Field(default=None, max_length=64)
    result: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


class ChatMessageItem(BaseModel):
    id: str
    type: str
    content: str
    generation_type: Optional[str]
    generation_id: Optional[str]
    result: Optional[Dict[str, Any]]
    timestamp: datetime


class ChatMessageListResponse(BaseModel):
    messages: list[ChatMessageItem]


class ChatReplaceRequest(BaseModel):
    messages: Any = None


class ChatMutationResponse(BaseModel):
    success: bool
    count: int
