"""Razorpay and Stripe webhook endpoints with idempotent processing."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from radio444.billing.plans import credits_for_razorpay_plan, detect_plan_type, load_plans
from radio444.billing.razorpay_client import RazorpayAPIError, RazorpayClient, get_razorpay_client
from radio444.billing.signatures import (
    WebhookSignatureError,
    parse_json_object,
    verify_razorpay_webhook_signature,
    verify_stripe_signature,
)
from radio444.core.config import get_settings
from radio444.core.logger import get_logger
from radio444.core.metrics import record_webhook_event
from radio444.credits.ledger import (
    TX_PLUGIN_PURCHASE,
    TX_STATUS_FAILED,
    TX_SUBSCRIPTION_BONUS,
    award_credits,
    log_transaction,
    transaction_exists,
)
from radio444.schemas.billing import WebhookResponse
from radio444.storage.db import get_session
from radio444.storage.models import PaymentEvent, User


router = APIRouter(prefix="/billing", tags=["billing"])
logger = get_logger("radio444.billing.webhooks")

PROVIDER_RAZORPAY = "razorpay"
PROVIDER_STRIPE = "stripe"

_ACTIVE_SUBSCRIPTION_STATES = {"active", "authenticated"}
_STATUS_ONLY_EVENTS = {
    "subscription.paused": "paused",
    "subscription.resumed": "active",
    "subscription.cancelled": "cancelled",
    "subscription.expired": "cancelled",
}

HandlerResult = Tuple[str, str]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    wrapper = (payload.get("payload") or {}).get(name) or {}
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity", wrapper)
    return entity if isinstance(entity, dict) else {}


def _parse_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def _from_unix(value: Any) -> Optional[datetime]:
    seconds = _parse_int(value)
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _insert_event(
    session: Session,
    *,
    provider: str,
    event_id: str,
    event_type: str,
    payload_json: str,
) -> Tuple[Optional[PaymentEvent], bool]:
    event = PaymentEvent(
        provider=provider,
        event_id=event_id,
        event_type=event_type,
        status="received",
        payload_json=payload_json,
    )
    session.add(event)
    try:
        session.commit()
        return event, False
    except IntegrityError:
        session.rollback()
        return None, True


def _mark_event_failed(session: Session, *, provider: str, event_id: str, error_message: str) -> None:
    event = session.scalar(
        select(PaymentEvent).where(PaymentEvent.provider == provider, PaymentEvent.event_id == event_id)
    )
    if event is None:
        return
    event.status = "failed"
    event.error_message = error_message[:255]
    event.processed_at = _now_utc()
    session.commit()


def _process_event(
    session: Session,
    *,
    provider: str,
    event_id: str,
    event_type: str,
    payload_bytes: bytes,
    handler: Callable[[PaymentEvent], HandlerResult],
) -> WebhookResponse:
    event, duplicate = _insert_event(
        session,
        provider=provider,
        event_id=event_id,
        event_type=event_type,
        payload_json=payload_bytes.decode("utf-8"),
    )
    if duplicate:
        record_webhook_event(provider=provider, status="duplicate")
        return WebhookResponse(
            status="duplicate",
            duplicate=True,
            event_id=event_id,
            event_type=event_type,
            message="Event already processed",
        )
    if event is None:  # pragma: no cover
        raise RuntimeError("Failed to persist payment event")

    try:
        final_status, message = handler(event)
        event.status = final_status
        event.error_message = None if final_status != "ignored" else message[:255]
        event.processed_at = _now_utc()
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception("webhook_processing_failed", provider=provider, event_id=event_id, event_type=event_type)
        _mark_event_failed(session, provider=provider, event_id=event_id, error_message=str(exc))
        record_webhook_event(provider=provider, status="failed")
        return WebhookResponse(
            status="failed",
            duplicate=False,
            event_id=event_id,
            event_type=event_type,
            message="Processing failed",
        )

    record_webhook_event(provider=provider, status=final_status)
    logger.info("webhook_processed", provider=provider, event_id=event_id, event_type=event_type, status=final_status)
    return WebhookResponse(
        status=final_status,
        duplicate=False,
        event_id=event_id,
        event_type=event_type,
        message=message,
    )


# Razorpay


def _resolve_razorpay_user(
    session: Session,
    *,
    customer_id: Optional[str],
    subscription_id: Optional[str],
    notes: Dict[str, Any],
    client: RazorpayClient,
) -> Optional[User]:
    if customer_id:
        user = session.scalar(select(User).where(User.razorpay_customer_id == customer_id))
        if user is not None:
            return user
    if subscription_id:
        user = session.scalar(select(User).where(User.subscription_id == subscription_id))
        if user is not None:
            return user

    noted_user_id = notes.get("clerk_user_id") or notes.get("user_id")
    if noted_user_id:
        user = session.get(User, str(noted_user_id))
        if user is not None:
            return user

    if customer_id and client.configured:
        try:
            customer = client.fetch_customer(customer_id)
        except RazorpayAPIError:
            logger.warning("razorpay_customer_lookup_failed", customer_id=customer_id)
            return None
        email = customer.get("email")
        if email:
            return session.scalar(select(User).where(User.email == str(email)))
    return None


def _verify_subscription_active(client: RazorpayClient, subscription_id: str) -> Optional[Tuple[bool, str]]:
    if not client.configured:
        return None
    try:
        remote = client.fetch_subscription(subscription_id)
    except RazorpayAPIError:
        logger.warning("razorpay_subscription_verify_failed", subscription_id=subscription_id)
        return None
    remote_status = str(remote.get("status") or "")
    return remote_status in _ACTIVE_SUBSCRIPTION_STATES, remote_status


def _apply_payment_captured(session: Session, event: PaymentEvent, payload: Dict[str, Any]) -> HandlerResult:
    payment = _entity(payload, "payment")
    payment_id = str(payment.get("id") or "")
    notes = payment.get("notes") or {}
    if not payment_id or not isinstance(notes, dict):
        return "ignored", "Payment payload is invalid"

    user_id = notes.get("clerk_user_id") or notes.get("user_id")
    credits = _parse_int(notes.get("credits"))
    if not user_id or credits <= 0:
        return "ignored", "Payment carries no credit grant"

    idempotency_key = f"razorpay:{payment_id}"
    if transaction_exists(session, idempotency_key=idempotency_key):
        return "ignored", "Payment already credited"

    user = session.get(User, str(user_id))
    if user is None:
        return "ignored", "User not found"

    plan_type = str(notes.get("plan_type") or detect_plan_type(notes.get("plan_id")))
    new_balance = award_credits(session, user_id=user.id, amount=credits)
    user.subscription_status = "active"
    user.subscription_plan = plan_type
    if notes.get("customer_id"):
        user.razorpay_customer_id = str(notes["customer_id"])
    if notes.get("subscription_id"):
        user.subscription_id = str(notes["subscription_id"])

    log_transaction(
        session,
        user_id=user.id,
        amount=credits,
        transaction_type=TX_SUBSCRIPTION_BONUS,
        balance_after=new_balance,
        description=f"Payment captured: +{credits} credits ({plan_type})",
        metadata={"razorpay_id": payment_id, "event_type": event.event_type, "payment_amount": payment.get("amount")},
        idempotency_key=idempotency_key,
    )
    event.user_id = user.id
    return "processed", "Payment credits delivered"


def _apply_subscription_activated(
    session: Session,
    event: PaymentEvent,
    payload: Dict[str, Any],
    client: RazorpayClient,
) -> HandlerResult:
    subscription = _entity(payload, "subscription")
    user = _resolve_razorpay_user(
        session,
        customer_id=subscription.get("customer_id"),
        subscription_id=subscription.get("id"),
        notes=subscription.get("notes") or {},
        client=client,
    )
    if user is None:
        return "ignored", "User not found for subscription"

    user.subscription_status = "active"
    user.subscription_plan = detect_plan_type(subscription.get("plan_id"))
    user.subscription_id = subscription.get("id")
    user.subscription_end = _from_unix(subscription.get("end_at"))
    if subscription.get("customer_id"):
        user.razorpay_customer_id = subscription["customer_id"]
    event.user_id = user.id
    return "processed", "Subscription activated"


def _apply_subscription_charged(
    session: Session,
    event: PaymentEvent,
    payload: Dict[str, Any],
    client: RazorpayClient,
) -> HandlerResult:
    subscription = _entity(payload, "subscription")
    subscription_id = str(subscription.get("id") or "")
    if not subscription_id:
        return "ignored", "Subscription payload missing id"

    paid_count = _parse_int(subscription.get("paid_count"))
    idempotency_key = f"{subscription_id}_charged_{paid_count}"
    if transaction_exists(session, idempotency_key=idempotency_key):
        return "ignored", "Subscription cycle already credited"

    notes = subscription.get("notes") or {}
    user = _resolve_razorpay_user(
        session,
        customer_id=subscription.get("customer_id"),
        subscription_id=subscription_id,
        notes=notes if isinstance(notes, dict) else {},
        client=client,
    )
    if user is None:
        return "ignored", "User not found for subscription"
    event.user_id = user.id

    verification = _verify_subscription_active(client, subscription_id)
    if verification is not None and not verification[0]:
        log_transaction(
            session,
            user_id=user.id,
            amount=0,
            transaction_type=TX_SUBSCRIPTION_BONUS,
            status=TX_STATUS_FAILED,
            description=f"Blocked: subscription.charged with status {verification[1]}",
            metadata={"razorpay_id": idempotency_key, "blocked_reason": "subscription_not_active"},
        )
        return "ignored", "Subscription is not active"

    end_at = _from_unix(subscription.get("end_at"))
    if end_at is not None and end_at < _now_utc():
        return "ignored", "Subscription period already ended"

    if user.subscription_status in {"cancelled", "expired"} and not (verification and verification[0]):
        return "ignored", "Subscription is cancelled"

    plan_id = subscription.get("plan_id")
    credits = _parse_int(notes.get("credits")) if isinstance(notes, dict) else 0
    if credits <= 0:
        credits = credits_for_razorpay_plan(plan_id)
    if credits <= 0:
        return "ignored", "No credits configured for plan"

    plan_type = detect_plan_type(plan_id)
    new_balance = award_credits(session, user_id=user.id, amount=credits)
    user.subscription_status = "active"
    user.subscription_plan = plan_type
    user.subscription_id = subscription_id
    user.subscription_end = end_at
    if subscription.get("customer_id"):
        user.razorpay_customer_id = subscription["customer_id"]

    log_transaction(
        session,
        user_id=user.id,
        amount=credits,
        transaction_type=TX_SUBSCRIPTION_BONUS,
        balance_after=new_balance,
        description=f"Subscription charged (cycle #{paid_count}): +{credits} credits ({plan_type})",
        metadata={"razorpay_id": idempotency_key, "plan_id": plan_id, "paid_count": paid_count},
        idempotency_key=idempotency_key,
    )
    return "processed", "Subscription credits delivered"


def _apply_subscription_status(
    session: Session,
    event: PaymentEvent,
    payload: Dict[str, Any],
) -> HandlerResult:
    subscription = _entity(payload, "subscription")
    subscription_id = subscription.get("id")
    user = session.scalar(select(User).where(User.subscription_id == subscription_id)) if subscription_id else None
    if user is None:
        return "ignored", "No user linked to subscription"

    if event.event_type == "subscription.updated":
        user.subscription_plan = detect_plan_type(subscription.get("plan_id"))
        user.subscription_end = _from_unix(subscription.get("end_at"))
    else:
        user.subscription_status = _STATUS_ONLY_EVENTS[event.event_type]
    event.user_id = user.id
    return "processed", f"Subscription status applied: {event.event_type}"


def process_razorpay_event(
    session: Session,
    *,
    event_id: str,
    payload: Dict[str, Any],
    payload_bytes: bytes,
    client: Optional[RazorpayClient] = None,
) -> WebhookResponse:
    event_type = str(payload["event"])
    razorpay = client or get_razorpay_client()

    def handler(event: PaymentEvent) -> HandlerResult:
        if event_type == "payment.captured":
            return _apply_payment_captured(session, event, payload)
        if event_type == "subscription.activated":
            return _apply_subscription_activated(session, event, payload, razorpay)
        if event_type == "subscription.charged":
            return _apply_subscription_charged(session, event, payload, razorpay)
        if event_type in _STATUS_ONLY_EVENTS or event_type == "subscription.updated":
            return _apply_subscription_status(session, event, payload)
        if event_type == "payment.failed":
            payment = _entity(payload, "payment")
            logger.warning(
                "razorpay_payment_failed",
                payment_id=payment.get("id"),
                error_code=payment.get("error_code"),
            )
            return "processed", "Payment failure logged"
        return "ignored", "Unsupported Razorpay event type"

    return _process_event(
        session,
        provider=PROVIDER_RAZORPAY,
        event_id=event_id,
        event_type=event_type,
        payload_bytes=payload_bytes,
        handler=handler,
    )


@router.post("/razorpay/webhook", response_model=WebhookResponse)
async def razorpay_webhook(
    request: Request,
    session: Session = Depends(get_session),
) -> WebhookResponse:
    settings = get_settings()
    payload_bytes = await request.body()
    signature = request.headers.get("x-razorpay-signature", "")
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature")

    try:
        verify_razorpay_webhook_signature(
            payload=payload_bytes,
            signature=signature,
            webhook_secret=settings.razorpay_webhook_secret,
        )
    except WebhookSignatureError as exc:
        logger.warning("razorpay_signature_invalid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature") from exc

    try:
        payload = parse_json_object(payload_bytes, required=("event",))
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    event_id = request.headers.get("x-razorpay-event-id") or hashlib.sha256(payload_bytes).hexdigest()
    return process_razorpay_event(session, event_id=event_id, payload=payload, payload_bytes=payload_bytes)


# Stripe


def _find_user_by_customer(session: Session, customer_id: str) -> Optional[User]:
    return session.scalar(select(User).where(User.stripe_customer_id == customer_id))


def _resolve_plan_name_from_subscription(subscription: Dict[str, Any], fallback: Optional[str]) -> Optional[str]:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    first_item = data[0] if isinstance(data, list) and data else {}
    price = first_item.get("price") or {}

    for candidate in (price.get("lookup_key"), (subscription.get("metadata") or {}).get("plan")):
        if isinstance(candidate, str) and candidate:
            return candidate
    nickname = price.get("nickname")
    if isinstance(nickname, str) and nickname:
        return nickname.lower().replace(" ", "_")
    return fallback


def _apply_stripe_subscription(session: Session, event: PaymentEvent, payload: Dict[str, Any]) -> HandlerResult:
    subscription = (payload.get("data") or {}).get("object") or {}
    if not isinstance(subscription, dict):
        return "ignored", "Subscription payload is invalid"

    customer_id = subscription.get("customer")
    subscription_id = subscription.get("id")
    if not isinstance(customer_id, str) or not customer_id:
        return "ignored", "Subscription payload missing customer"
    if not isinstance(subscription_id, str) or not subscription_id:
        return "ignored", "Subscription payload missing id"

    user = _find_user_by_customer(session, customer_id)
    if user is None:
        return "ignored", "No user linked to Stripe customer"

    resolved_plan = _resolve_plan_name_from_subscription(subscription, user.subscription_plan)
    if resolved_plan in load_plans().plans:
        user.subscription_plan = resolved_plan
    user.subscription_id = subscription_id
    user.subscription_status = str(subscription.get("status") or "inactive")
    user.subscription_end = _from_unix(subscription.get("current_period_end"))
    if event.event_type == "customer.subscription.deleted":
        user.subscription_status = "cancelled"

    event.user_id = user.id
    return "processed", "Subscription event applied"


def _apply_stripe_payment_failed(session: Session, event: PaymentEvent, payload: Dict[str, Any]) -> HandlerResult:
    invoice = (payload.get("data") or {}).get("object") or {}
    customer_id = invoice.get("customer") if isinstance(invoice, dict) else None
    if not isinstance(customer_id, str) or not customer_id:
        return "ignored", "Invoice payload missing customer"

    user = _find_user_by_customer(session, customer_id)
    if user is None:
        return "ignored", "No user linked to Stripe customer"

    user.subscription_status = "past_due"
    event.user_id = user.id
    return "processed", "Payment failure applied"


def _apply_stripe_checkout_completed(session: Session, event: PaymentEvent, payload: Dict[str, Any]) -> HandlerResult:
    checkout = (payload.get("data") or {}).get("object") or {}
    if not isinstance(checkout, dict):
        return "ignored", "Checkout payload is invalid"

    metadata = checkout.get("metadata") or {}
    user_id = metadata.get("user_id") or checkout.get("client_reference_id")
    user = session.get(User, str(user_id)) if user_id else None
    if user is None:
        return "ignored", "Checkout is not linked to a user"

    if isinstance(checkout.get("customer"), str):
        user.stripe_customer_id = checkout["customer"]
    event.user_id = user.id

    idempotency_key = f"stripe:{checkout.get('id')}"
    if transaction_exists(session, idempotency_key=idempotency_key):
        return "ignored", "Checkout already applied"

    if str(metadata.get("plugin_purchase") or "").lower() == "true":
        user.plugin_purchased = True
        log_transaction(
            session,
            user_id=user.id,
            amount=0,
            transaction_type=TX_PLUGIN_PURCHASE,
            balance_after=user.credits,
            description="Plugin purchase",
            metadata={"stripe_session_id": checkout.get("id")},
            idempotency_key=idempotency_key,
        )
        return "processed", "Plugin purchase applied"

    credits = _parse_int(metadata.get("credits"))
    if credits <= 0:
        return "ignored", "Checkout carries no credit grant"

    new_balance = award_credits(session, user_id=user.id, amount=credits)
    log_transaction(
        session,
        user_id=user.id,
        amount=credits,
        transaction_type=TX_SUBSCRIPTION_BONUS,
        balance_after=new_balance,
        description=f"Checkout completed: +{credits} credits",
        metadata={"stripe_session_id": checkout.get("id")},
        idempotency_key=idempotency_key,
    )
    return "processed", "Checkout credits delivered"


def process_stripe_event(
    session: Session,
    *,
    event: Dict[str, Any],
    payload_bytes: bytes,
) -> WebhookResponse:
    event_type = str(event["type"])

    def handler(record: PaymentEvent) -> HandlerResult:
        if event_type in {
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        }:
            return _apply_stripe_subscription(session, record, event)
        if event_type == "invoice.payment_failed":
            return _apply_stripe_payment_failed(session, record, event)
        if event_type == "checkout.session.completed":
            return _apply_stripe_checkout_completed(session, record, event)
        return "ignored", "Unsupported Stripe event type"

    return _process_event(
        session,
        provider=PROVIDER_STRIPE,
        event_id=str(event["id"]),
        event_type=event_type,
        payload_bytes=payload_bytes,
        handler=handler,
    )


@router.post("/stripe/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    session: Session = Depends(get_session),
) -> WebhookResponse:
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe webhook secret is not configured",
        )

    payload_bytes = await request.body()
    try:
        verify_stripe_signature(
            payload=payload_bytes,
            signature_header=request.headers.get("stripe-signature", ""),
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_signature_tolerance_seconds,
        )
        event = parse_json_object(payload_bytes, required=("id", "type"))
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return process_stripe_event(session, event=event, payload_bytes=payload_bytes)
