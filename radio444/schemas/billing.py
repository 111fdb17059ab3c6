"""Pydantic schemas for billing and wallet endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    status: str
    duplicate: bool
    event_id: str
    event_type: str
    message: Optional[str] = None


class RazorpayVerifyRequest(BaseModel):
    razorpay_order_id: str = Field(min_length=1, max_length=64)
    razorpay_payment_id: str = Field(min_length=1, max_length=64)
    razorpay_signature: str = Field(min_length=1, max_length=128)


class RazorpayVerifyResponse(BaseModel):
    success: bool
    deposit_usd: Decimal
    wallet_balance: Decimal
    credits: int
    already_processed: bool
