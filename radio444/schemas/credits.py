"""Schemas for credit balance, ledger history and wallet endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CreditBalanceResponse(BaseModel):
    credits: int
    wallet_balance: Decimal
    total_generated: int
    subscription_plan: Optional[str] = None
    subscription_status: str


class CreditTransactionItem(BaseModel):
    id: str
    amount: int
    balance_after: Optional[int]
    type: str
    status: str
    description: Optional[str]
    metadata: Dict[str, Any]
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class CreditTransactionListResponse(BaseModel):
    transactions: list[CreditTransactionItem]
    pagination: Pagination
    credits: int
    total_generated: int


class WalletConvertRequest(BaseModel):
    amount_usd: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)


class WalletConvertResponse(BaseModel):
    success: bool
    amount_converted: Decimal
    credits_added: int
    new_wallet: Decimal
    new_credits: int
    message: str


class RedeemCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)


class RedeemCodeResponse(BaseModel):
    success: bool
    credits_added: int
    credits: int
