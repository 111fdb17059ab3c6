"""EARN marketplace routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from radio444.auth.dependencies import require_rate_limited_user
from radio444.auth.jwt import AuthContext
from radio444.core.errors import sanitize_credit_error, sanitize_error
from radio444.credits.ledger import InsufficientCreditsError
from radio444.earn.service import is_subscribed, purchase_track
from radio444.schemas.earn import PurchaseRequest, PurchaseResponse, PurchaseTransaction
from radio444.storage.db import get_session
from radio444.storage.models import MediaItem, User


router = APIRouter(prefix="/earn", tags=["earn"])


@router.post("/purchase", response_model=PurchaseResponse)
def purchase(
    payload: PurchaseRequest,
    auth: AuthContext = Depends(require_rate_limited_user("credits")),
    session: Session = Depends(get_session),
) -> PurchaseResponse:
    if not payload.trackId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="trackId required")

    buyer = session.get(User, auth.user_id)
    if buyer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not is_subscribed(buyer.subscription_status):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Subscription required. Upgrade at /pricing to download tracks.",
        )

    media = session.get(MediaItem, payload.trackId)
    if media is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Track not found")
    if media.user_id == auth.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot purchase your own track")

    try:
        result = purchase_track(
            session,
            buyer_id=auth.user_id,
            media=media,
            split_stems=payload.splitStems,
            idempotency_key=payload.idempotencyKey,
        )
    except InsufficientCreditsError as exc:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=sanitize_credit_error(str(exc)),
            headers={"x-credits-needed": str(exc.needed), "x-credits-available": str(exc.available)},
        ) from exc
    except LookupError as exc:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=sanitize_error(exc, context="earn_purchase"),
        ) from exc

    return PurchaseResponse(
        success=True,
        message="Purchase completed",
        transaction=PurchaseTransaction(totalCost=result.total_cost, artistShare=result.artist_share),
        downloads=result.downloads,
        credits_remaining=result.buyer_credits,
    )
