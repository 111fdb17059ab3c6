"""Track purchases on the EARN marketplace.

A download costs a flat fee, stem separation adds a surcharge and the whole
amount goes to the track's artist.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from radio444.core.logger import get_logger
from radio444.credits.ledger import TX_EARN_PURCHASE, TX_EARN_SALE, get_balance, transfer_credits
from radio444.storage.models import MediaItem


DOWNLOAD_COST = 2
SPLIT_STEMS_COST = 5
SUBSCRIBED_STATUSES = frozenset({"active", "trialing"})

logger = get_logger("radio444.earn")


@dataclass(frozen=True)
class PurchaseResult:
    total_cost: int
    artist_share: int
    downloads: int
    buyer_credits: int
    replayed: bool = False


def purchase_cost(*, split_stems: bool) -> int:
    return DOWNLOAD_COST + (SPLIT_STEMS_COST if split_stems else 0)


def is_subscribed(subscription_status: Optional[str]) -> bool:
    return (subscription_status or "").lower() in SUBSCRIBED_STATUSES


def _downloads(session: Session, media_id: str) -> int:
    return int(session.scalar(select(MediaItem.downloads).where(MediaItem.id == media_id)) or 0)


def purchase_track(
    session: Session,
    *,
    buyer_id: str,
    media: MediaItem,
    split_stems: bool,
    idempotency_key: Optional[str] = None,
) -> PurchaseResult:
    """Charge the buyer, pay the artist and count the download.

    Raises ``InsufficientCreditsError`` when the buyer cannot cover the cost and
    ``LookupError`` when the artist account is gone. A repeated idempotency key
    returns the original outcome without moving credits again.
    """

    total_cost = purchase_cost(split_stems=split_stems)
    key = f"earn:{buyer_id}:{idempotency_key or uuid4().hex}"

    transfer = transfer_credits(
        session,
        from_user_id=buyer_id,
        to_user_id=media.user_id,
        amount=total_cost,
        idempotency_key=key,
        debit_type=TX_EARN_PURCHASE,
        credit_type=TX_EARN_SALE,
        description=f"EARN download: {media.title or media.id}",
        metadata={"media_id": media.id, "split_stems": split_stems, "admin_share": 0},
    )
    if not transfer.applied:
        return PurchaseResult(
            total_cost=total_cost,
            artist_share=total_cost,
            downloads=_downloads(session, media.id),
            buyer_credits=transfer.from_balance,
            replayed=True,
        )

    session.execute(
        update(MediaItem)
        .where(MediaItem.id == media.id)
        .values(downloads=MediaItem.downloads + 1)
        .execution_options(synchronize_session="fetch")
    )
    try:
        session.commit()
    except IntegrityError:
        # Same idempotency key committed by a concurrent request.
        session.rollback()
        logger.info("earn_purchase_replayed", media_id=media.id, buyer_id=buyer_id)
        return PurchaseResult(
            total_cost=total_cost,
            artist_share=total_cost,
            downloads=_downloads(session, media.id),
            buyer_credits=int(get_balance(session, user_id=buyer_id) or 0),
            replayed=True,
        )

    logger.info(
        "earn_purchase_completed",
        media_id=media.id,
        buyer_id=buyer_id,
        artist_id=media.user_id,
        total_cost=total_cost,
        split_stems=split_stems,
    )
    return PurchaseResult(
        total_cost=total_cost,
        artist_share=total_cost,
        downloads=_downloads(session, media.id),
        buyer_credits=transfer.from_balance,
    )
