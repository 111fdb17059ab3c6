"""Webhook and checkout signature verification for payment and auth providers."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class WebhookSignatureError(ValueError):
    """Raised when a webhook payload or its signature is invalid."""


def _hmac_sha256(secret: bytes, message: bytes) -> bytes:
    return hmac.new(secret, message, digestmod=hashlib.sha256).digest()


def _check_tolerance(timestamp: int, tolerance_seconds: int, now: Optional[datetime]) -> None:
    current_time = now or datetime.now(timezone.utc)
    if abs(int(current_time.timestamp()) - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("Signature timestamp outside tolerance window")


@dataclass(frozen=True)
class StripeSignatureData:
    timestamp: int
    signatures: List[str]


def parse_stripe_signature_header(signature_header: str) -> StripeSignatureData:
    timestamp: Optional[int] = None
    signatures: List[str] = []

    for part in signature_header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise WebhookSignatureError("Invalid Stripe signature timestamp") from exc
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Invalid Stripe signature header")
    return StripeSignatureData(timestamp=timestamp, signatures=signatures)


def verify_stripe_signature(
    *,
    payload: bytes,
    signature_header: str,
    webhook_secret: str,
    tolerance_seconds: int = 300,
    now: Optional[datetime] = None,
) -> None:
    if not webhook_secret:
        raise WebhookSignatureError("Stripe webhook secret is not configured")

    data = parse_stripe_signature_header(signature_header)
    _check_tolerance(data.timestamp, tolerance_seconds, now)

    signed_payload = f"{data.timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    expected = _hmac_sha256(webhook_secret.encode("utf-8"), signed_payload).hex()
    if not any(hmac.compare_digest(expected, candidate) for candidate in data.signatures):
        raise WebhookSignatureError("Stripe signature mismatch")


def verify_razorpay_webhook_signature(*, payload: bytes, signature: str, webhook_secret: str) -> None:
    """``x-razorpay-signature`` is hex HMAC-SHA256 of the raw body."""

    if not webhook_secret:
        raise WebhookSignatureError("Razorpay webhook secret is not configured")
    expected = _hmac_sha256(webhook_secret.encode("utf-8"), payload).hex()
    if not hmac.compare_digest(expected, signature.strip()):
        raise WebhookSignatureError("Razorpay signature mismatch")


def verify_razorpay_payment_signature(*, order_id: str, payment_id: str, signature: str, key_secret: str) -> None:
    """Checkout signature: hex HMAC-SHA256 of ``"{order_id}|{payment_id}"``."""

    if not key_secret:
        raise WebhookSignatureError("Razorpay key secret is not configured")
    message = f"{order_id}|{payment_id}".encode("utf-8")
    expected = _hmac_sha256(key_secret.encode("utf-8"), message).hex()
    if not hmac.compare_digest(expected, signature.strip()):
        raise WebhookSignatureError("Payment verification failed")


def _svix_secret_bytes(secret: str) -> bytes:
    encoded = secret.strip()
    if encoded.startswith("whsec_"):
        encoded = encoded[len("whsec_"):]
    try:
        return base64.b64decode(encoded)
    except (binascii.Error, ValueError) as exc:
        raise WebhookSignatureError("Invalid auth webhook secret") from exc


def sign_svix_payload(*, msg_id: str, timestamp: int, payload: bytes, secret: str) -> str:
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + payload
    digest = _hmac_sha256(_svix_secret_bytes(secret), signed)
    return "v1," + base64.b64encode(digest).decode("ascii")


def verify_svix_signature(
    *,
    payload: bytes,
    msg_id: str,
    timestamp: str,
    signature_header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[datetime] = None,
) -> None:
    if not secret:
        raise WebhookSignatureError("Auth webhook secret is not configured")
    if not msg_id or not timestamp or not signature_header:
        raise WebhookSignatureError("Missing svix headers")
    try:
        timestamp_value = int(timestamp)
    except ValueError as exc:
        raise WebhookSignatureError("Invalid svix timestamp") from exc
    _check_tolerance(timestamp_value, tolerance_seconds, now)

    expected = sign_svix_payload(msg_id=msg_id, timestamp=timestamp_value, payload=payload, secret=secret)
    candidates = [item for item in signature_header.split(" ") if item.startswith("v1,")]
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise WebhookSignatureError("Auth webhook signature mismatch")


def parse_json_object(payload: bytes, *, required: tuple[str, ...] = ()) -> Dict[str, Any]:
    try:
        body = json.loads(payload.decode("utf-8"))
    except Exception as exc:
        raise WebhookSignatureError("Invalid JSON payload") from exc

    if not isinstance(body, dict):
        raise WebhookSignatureError("Payload must be a JSON object")
    missing = [name for name in required if name not in body]
    if missing:
        raise WebhookSignatureError(f"Payload missing required fields: {'/'.join(missing)}")
    return body
