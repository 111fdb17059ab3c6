"""Credit and wallet ledger.

Balances are only ever changed with single conditional ``UPDATE`` statements so
the database arbitrates concurrent spends. None of these helpers commit: the
caller owns the transaction so a deduction and the row it pays for land
together.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
import json
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from radio444.core.config import get_settings
from radio444.core.logger import get_logger
from radio444.storage.models import CreditTransaction, User


TX_CREDIT_AWARD = "credit_award"
TX_CREDIT_REFUND = "credit_refund"
TX_WALLET_DEPOSIT = "wallet_deposit"
TX_WALLET_CONVERSION = "wallet_conversion"
TX_SUBSCRIPTION_BONUS = "subscription_bonus"
TX_PLUGIN_PURCHASE = "plugin_purchase"
TX_CODE_CLAIM = "code_claim"
TX_EARN_PURCHASE = "earn_purchase"
TX_EARN_SALE = "earn_sale"
TX_OTHER = "other"

TX_STATUS_SUCCESS = "success"
TX_STATUS_FAILED = "failed"
TX_STATUS_PENDING = "pending"

CENT = Decimal("0.01")

logger = get_logger("radio444.credits.ledger")


class InsufficientCreditsError(Exception):
    def __init__(self, *, needed: int, available: int) -> None:
        super().__init__("Insufficient credits")
        self.needed = needed
        self.available = available


class WalletError(ValueError):
    """Raised for invalid wallet operations (empty wallet, bad amount)."""


@dataclass(frozen=True)
class DeductResult:
    success: bool
    new_credits: int
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ConversionResult:
    amount_converted: Decimal
    credits_added: int
    new_wallet_balance: Decimal
    new_credits: int


@dataclass(frozen=True)
class TransferResult:
    applied: bool
    from_balance: int
    to_balance: int


def generation_transaction_type(generation_type: str) -> str:
    return f"generation_{generation_type.replace('-', '_')}"


def _to_decimal(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def get_balance(session: Session, *, user_id: str) -> Optional[int]:
    credits = session.scalar(select(User.credits).where(User.id == user_id))
    return None if credits is None else int(credits)


def log_transaction(
    session: Session,
    *,
    user_id: str,
    amount: int,
    transaction_type: str,
    balance_after: Optional[int] = None,
    status: str = TX_STATUS_SUCCESS,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        user_id=user_id,
        amount=int(amount),
        balance_after=balance_after,
        type=transaction_type,
        status=status,
        description=(description or "")[:255] or None,
        metadata_json=json.dumps({"source": "app", **(metadata or {})}, separators=(",", ":"), sort_keys=True),
        idempotency_key=idempotency_key,
    )
    session.add(entry)
    return entry


def transaction_exists(session: Session, *, idempotency_key: str) -> bool:
    existing = session.scalar(
        select(CreditTransaction.id).where(CreditTransaction.idempotency_key == idempotency_key)
    )
    return existing is not None


def deduct_credits(session: Session, *, user_id: str, amount: int) -> DeductResult:
    if amount <= 0:
        raise ValueError("Deduction amount must be positive")

    result = session.execute(
        update(User)
        .where(User.id == user_id, User.credits >= amount)
        .values(
            credits=User.credits - amount,
            total_generated=User.total_generated + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    current = get_balance(session, user_id=user_id)
    if result.rowcount != 1:
        if current is None:
            return DeductResult(success=False, new_credits=0, error_message="User not found")
        return DeductResult(success=False, new_credits=current, error_message="Insufficient credits")
    return DeductResult(success=True, new_credits=int(current or 0))


def award_credits(session: Session, *, user_id: str, amount: int) -> Optional[int]:
    """Add credits; returns the new balance or None when the user is unknown."""

    if amount <= 0:
        raise ValueError("Award amount must be positive")

    result = session.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + amount, updated_at=func.now())
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        return None
    return get_balance(session, user_id=user_id)


def refund_credits(
    session: Session,
    *,
    user_id: str,
    amount: int,
    reason: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[int]:
    if amount <= 0:
        return get_balance(session, user_id=user_id)
    new_balance = award_credits(session, user_id=user_id, amount=amount)
    if new_balance is not None:
        log_transaction(
            session,
            user_id=user_id,
            amount=amount,
            transaction_type=TX_CREDIT_REFUND,
            balance_after=new_balance,
            description=reason,
            metadata=metadata,
        )
        logger.info("credits_refunded", refunded_user_id=user_id, amount=amount, reason=reason)
    return new_balance


def deposit_wallet(
    session: Session,
    *,
    user_id: str,
    amount_usd: Decimal,
    idempotency_key: str,
    description: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> tuple[bool, Decimal]:
    """Credit the USD wallet once per idempotency key; returns (applied, balance)."""

    amount = _to_decimal(amount_usd)
    if amount <= 0:
        raise WalletError("Deposit amount must be greater than 0")

    if transaction_exists(session, idempotency_key=idempotency_key):
        balance = session.scalar(select(User.wallet_balance).where(User.id == user_id))
        return False, _to_decimal(balance)

    result = session.execute(
        update(User)
        .where(User.id == user_id)
        .values(wallet_balance=User.wallet_balance + amount, updated_at=func.now())
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise WalletError("User not found")

    balance = _to_decimal(session.scalar(select(User.wallet_balance).where(User.id == user_id)))
    log_transaction(
        session,
        user_id=user_id,
        amount=0,
        transaction_type=TX_WALLET_DEPOSIT,
        balance_after=get_balance(session, user_id=user_id),
        description=description,
        metadata={"deposit_usd": str(amount), "wallet_balance": str(balance), **(metadata or {})},
        idempotency_key=idempotency_key,
    )
    return True, balance


def convert_wallet_to_credits(
    session: Session,
    *,
    user_id: str,
    amount_usd: Optional[Decimal] = None,
) -> ConversionResult:
    """Convert wallet dollars to credits; ``None`` converts the whole balance.

    Only whole credits are bought and the wallet is debited their exact cost
    rounded up to the cent, so any remainder stays in the wallet.
    """

    rate = Decimal(str(get_settings().wallet_usd_per_credit))
    user = session.get(User, user_id)
    if user is None:
        raise LookupError("User not found")

    wallet = _to_decimal(user.wallet_balance)
    if wallet <= 0:
        raise WalletError("No wallet balance to convert")

    requested = wallet if amount_usd is None else _to_decimal(amount_usd)
    if requested <= 0:
        raise WalletError("Amount must be greater than 0")
    if requested > wallet:
        raise WalletError(f"Amount exceeds wallet balance (${wallet:.2f})")

    credits_added = int((requested / rate).to_integral_value(rounding=ROUND_FLOOR))
    if credits_added <= 0:
        raise WalletError(f"Amount is below the price of one credit (${rate})")
    debit = (rate * credits_added).quantize(CENT, rounding=ROUND_CEILING)

    result = session.execute(
        update(User)
        .where(User.id == user_id, User.wallet_balance >= debit)
        .values(
            wallet_balance=User.wallet_balance - debit,
            credits=User.credits + credits_added,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise WalletError("Wallet balance changed, please retry")

    new_wallet = _to_decimal(session.scalar(select(User.wallet_balance).where(User.id == user_id)))
    new_credits = int(get_balance(session, user_id=user_id) or 0)
    log_transaction(
        session,
        user_id=user_id,
        amount=credits_added,
        transaction_type=TX_WALLET_CONVERSION,
        balance_after=new_credits,
        description=f"Converted ${debit:.2f} to {credits_added} credits",
        metadata={"amount_usd": str(debit), "rate": str(rate)},
    )
    return ConversionResult(
        amount_converted=debit,
        credits_added=credits_added,
        new_wallet_balance=new_wallet,
        new_credits=new_credits,
    )


def transfer_credits(
    session: Session,
    *,
    from_user_id: str,
    to_user_id: str,
    amount: int,
    idempotency_key: str,
    debit_type: str,
    credit_type: str,
    description: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> TransferResult:
    """Move credits between two users once per idempotency key.

    The sender is debited with a conditional ``UPDATE`` and each side gets its
    own ledger row (``<key>:debit`` and ``<key>:credit``) sharing one
    ``transfer_id``. Raises ``InsufficientCreditsError`` when the sender cannot
    cover ``amount`` and ``LookupError`` when either user is unknown.
    """

    if amount <= 0:
        raise ValueError("Transfer amount must be positive")
    if from_user_id == to_user_id:
        raise ValueError("Cannot transfer credits to yourself")

    debit_key = f"{idempotency_key}:debit"
    if transaction_exists(session, idempotency_key=debit_key):
        return TransferResult(
            applied=False,
            from_balance=int(get_balance(session, user_id=from_user_id) or 0),
            to_balance=int(get_balance(session, user_id=to_user_id) or 0),
        )

    if get_balance(session, user_id=to_user_id) is None:
        raise LookupError("Recipient not found")

    result = session.execute(
        update(User)
        .where(User.id == from_user_id, User.credits >= amount)
        .values(credits=User.credits - amount, updated_at=func.now())
        .execution_options(synchronize_session="fetch")
    )
    from_balance = get_balance(session, user_id=from_user_id)
    if result.rowcount != 1:
        if from_balance is None:
            raise LookupError("User not found")
        raise InsufficientCreditsError(needed=amount, available=from_balance)

    to_balance = award_credits(session, user_id=to_user_id, amount=amount)
    if to_balance is None:
        raise LookupError("Recipient not found")

    shared = {"transfer_id": idempotency_key, **(metadata or {})}
    log_transaction(
        session,
        user_id=from_user_id,
        amount=-amount,
        transaction_type=debit_type,
        balance_after=from_balance,
        description=description,
        metadata={**shared, "counterparty_id": to_user_id},
        idempotency_key=debit_key,
    )
    log_transaction(
        session,
        user_id=to_user_id,
        amount=amount,
        transaction_type=credit_type,
        balance_after=to_balance,
        description=description,
        metadata={**shared, "counterparty_id": from_user_id},
        idempotency_key=f"{idempotency_key}:credit",
    )
    logger.info(
        "credits_transferred",
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount=amount,
        transfer_id=idempotency_key,
    )
    return TransferResult(applied=True, from_balance=int(from_balance or 0), to_balance=to_balance)
