"""Credit balance, ledger history, wallet and code-redemption routes."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
import json
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from radio444.auth.dependencies import require_auth_context, require_rate_limited_user
from radio444.auth.jwt import AuthContext
from radio444.billing.plans import redeem_code_credits
from radio444.billing.razorpay_client import RazorpayAPIError, get_razorpay_client
from radio444.billing.signatures import WebhookSignatureError, verify_razorpay_payment_signature
from radio444.core.config import get_settings
from radio444.core.errors import sanitize_error
from radio444.core.logger import get_logger
from radio444.credits.ledger import (
    TX_CODE_CLAIM,
    WalletError,
    award_credits,
    convert_wallet_to_credits,
    deposit_wallet,
    log_transaction,
    transaction_exists,
)
from radio444.schemas.billing import RazorpayVerifyRequest, RazorpayVerifyResponse
from radio444.schemas.credits import (
    CreditBalanceResponse,
    CreditTransactionItem,
    CreditTransactionListResponse,
    Pagination,
    RedeemCodeRequest,
    RedeemCodeResponse,
    WalletConvertRequest,
    WalletConvertResponse,
)
from radio444.storage.db import get_session
from radio444.storage.models import CreditTransaction, User


router = APIRouter(tags=["credits"])
logger = get_logger("radio444.credits")


def _require_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _metadata(raw: Optional[str]) -> dict:
    try:
        parsed = json.loads(raw or "{}")
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


@router.get("/credits", response_model=CreditBalanceResponse)
def get_credits(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CreditBalanceResponse:
    user = _require_user(session, auth.user_id)
    return CreditBalanceResponse(
        credits=user.credits,
        wallet_balance=Decimal(str(user.wallet_balance or 0)),
        total_generated=user.total_generated,
        subscription_plan=user.subscription_plan,
        subscription_status=user.subscription_status,
    )


@router.get("/wallet/transactions", response_model=CreditTransactionListResponse)
def list_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    transaction_type: Optional[str] = Query(default=None, alias="type", max_length=40),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CreditTransactionListResponse:
    user = _require_user(session, auth.user_id)

    filters = [CreditTransaction.user_id == auth.user_id]
    if transaction_type:
        filters.append(CreditTransaction.type == transaction_type)

    total = int(session.scalar(select(func.count(CreditTransaction.id)).where(*filters)) or 0)
    rows = session.scalars(
        select(CreditTransaction)
        .where(*filters)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    return CreditTransactionListResponse(
        transactions=[
            CreditTransactionItem(
                id=row.id,
                amount=row.amount,
                balance_after=row.balance_after,
                type=row.type,
                status=row.status,
                description=row.description,
                metadata=_metadata(row.metadata_json),
                created_at=row.created_at,
            )
            for row in rows
        ],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        credits=user.credits,
        total_generated=user.total_generated,
    )


@router.post("/credits/convert", response_model=WalletConvertResponse)
def convert_wallet(
    payload: WalletConvertRequest,
    auth: AuthContext = Depends(require_rate_limited_user("credits")),
    session: Session = Depends(get_session),
) -> WalletConvertResponse:
    try:
        result = convert_wallet_to_credits(session, user_id=auth.user_id, amount_usd=payload.amount_usd)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
    except WalletError as exc:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    session.commit()

    logger.info("wallet_converted", amount_usd=str(result.amount_converted), credits_added=result.credits_added)
    return WalletConvertResponse(
        success=True,
        amount_converted=result.amount_converted,
        credits_added=result.credits_added,
        new_wallet=result.new_wallet_balance,
        new_credits=result.new_credits,
        message=f"Converted ${result.amount_converted:.2f} to {result.credits_added} credits",
    )


@router.post("/credits/redeem", response_model=RedeemCodeResponse)
def redeem_code(
    payload: RedeemCodeRequest,
    auth: AuthContext = Depends(require_rate_limited_user("credits")),
    session: Session = Depends(get_session),
) -> RedeemCodeResponse:
    code = payload.code.strip().upper()
    credits = redeem_code_credits(code)
    if credits is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    _require_user(session, auth.user_id)
    idempotency_key = f"code:{code}:{auth.user_id}"
    if transaction_exists(session, idempotency_key=idempotency_key):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Code already redeemed")

    new_balance = award_credits(session, user_id=auth.user_id, amount=credits)
    log_transaction(
        session,
        user_id=auth.user_id,
        amount=credits,
        transaction_type=TX_CODE_CLAIM,
        balance_after=new_balance,
        description=f"Redeemed code {code}: +{credits} credits",
        metadata={"code": code},
        idempotency_key=idempotency_key,
    )
    session.commit()
    return RedeemCodeResponse(success=True, credits_added=credits, credits=int(new_balance or 0))


@router.post("/credits/verify", response_model=RazorpayVerifyResponse)
def verify_wallet_deposit(
    payload: RazorpayVerifyRequest,
    auth: AuthContext = Depends(require_rate_limited_user("credits")),
    session: Session = Depends(get_session),
) -> RazorpayVerifyResponse:
    settings = get_settings()
    try:
        verify_razorpay_payment_signature(
            order_id=payload.razorpay_order_id,
            payment_id=payload.razorpay_payment_id,
            signature=payload.razorpay_signature,
            key_secret=settings.razorpay_key_secret,
        )
    except WebhookSignatureError as exc:
        logger.warning("wallet_verify_signature_mismatch", order_id=payload.razorpay_order_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment verification failed") from exc

    try:
        order = get_razorpay_client().fetch_order(payload.razorpay_order_id)
    except RazorpayAPIError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=sanitize_error(exc, context="wallet_verify_fetch_order"),
        ) from exc

    if order.get("status") != "paid":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order has not been paid")

    notes = order.get("notes") or {}
    try:
        deposit_usd = Decimal(str(notes.get("deposit_usd")))
    except (InvalidOperation, ValueError):
        deposit_usd = Decimal("0")
    if not deposit_usd.is_finite() or deposit_usd <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order, no deposit amount")

    user = _require_user(session, auth.user_id)
    try:
        applied, balance = deposit_wallet(
            session,
            user_id=auth.user_id,
            amount_usd=deposit_usd,
            idempotency_key=f"razorpay_order:{payload.razorpay_order_id}",
            description=f"Wallet deposit: +${deposit_usd:.2f}",
            metadata={
                "razorpay_order_id": payload.razorpay_order_id,
                "razorpay_payment_id": payload.razorpay_payment_id,
                "order_amount": order.get("amount"),
                "order_currency": order.get("currency"),
            },
        )
    except WalletError as exc:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    session.commit()

    return RazorpayVerifyResponse(
        success=True,
        deposit_usd=deposit_usd if applied else Decimal("0"),
        wallet_balance=balance,
        credits=user.credits,
        already_processed=not applied,
    )
