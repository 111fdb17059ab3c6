"""Schemas for the EARN marketplace."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PurchaseRequest(BaseModel):
    trackId: Optional[str] = Field(default=None, max_length=36)
    splitStems: bool = False
    idempotencyKey: Optional[str] = Field(default=None, min_length=8, max_length=64)


class PurchaseTransaction(BaseModel):
    totalCost: int
    artistShare: int
    adminShare: int = 0


class PurchaseResponse(BaseModel):
    success: bool
    message: str
    transaction: PurchaseTransaction
    downloads: int
    credits_remaining: int
