from __future__ import annotations

import hashlib
import hmac
import json
import time

from sqlalchemy import select

from radio444.storage.models import PaymentEvent

from tests.conftest import TEST_RAZORPAY_WEBHOOK_SECRET, TEST_STRIPE_WEBHOOK_SECRET


def _razorpay_headers(payload: bytes, event_id: str) -> dict:
    signature = hmac.new(TEST_RAZORPAY_WEBHOOK_SECRET.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return {
        "x-razorpay-signature": signature,
        "x-razorpay-event-id": event_id,
        "content-type": "application/json",
    }


def _stripe_signature(payload: bytes, timestamp: int) -> str:
    message = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(TEST_STRIPE_WEBHOOK_SECRET.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _post_stripe(api, event: dict):
    payload = json.dumps(event).encode("utf-8")
    return api.client.post(
        "/billing/stripe/webhook",
        content=payload,
        headers={"stripe-signature": _stripe_signature(payload, int(time.time())), "content-type": "application/json"},
    )


def _payment_captured(user_id: str, payment_id: str = "pay_001", credits: int = 535) -> bytes:
    return json.dumps(
        {
            "event": "payment.captured",
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "amount": 45000,
                        "notes": {"user_id": user_id, "credits": str(credits), "plan_type": "pro"},
                    }
                }
            },
        }
    ).encode("utf-8")


def test_razorpay_payment_captured_is_idempotent(api) -> None:
    user_id = api.create_user(credits=10)
    payload = _payment_captured(user_id)

    first = api.client.post("/billing/razorpay/webhook", content=payload, headers=_razorpay_headers(payload, "evt_1"))
    duplicate = api.client.post(
        "/billing/razorpay/webhook", content=payload, headers=_razorpay_headers(payload, "evt_1")
    )
    redelivered = api.client.post(
        "/billing/razorpay/webhook", content=payload, headers=_razorpay_headers(payload, "evt_2")
    )

    assert first.status_code == 200
    assert first.json()["status"] == "processed"
    assert duplicate.json()["status"] == "duplicate"
    assert duplicate.json()["duplicate"] is True
    assert redelivered.json()["status"] == "ignored"
    assert redelivered.json()["message"] == "Payment already credited"

    user = api.get_user(user_id)
    assert user.credits == 545
    assert user.subscription_status == "active"
    assert user.subscription_plan == "pro"
    assert [tx.idempotency_key for tx in api.transactions(user_id)] == ["razorpay:pay_001"]

    with api.session_factory() as session:
        events = session.scalars(select(PaymentEvent).order_by(PaymentEvent.event_id)).all()
        assert [(event.event_id, event.status) for event in events] == [("evt_1", "processed"), ("evt_2", "ignored")]
        assert events[0].user_id == user_id


def test_razorpay_signature_is_required(api) -> None:
    user_id = api.create_user()
    payload = _payment_captured(user_id)

    missing = api.client.post("/billing/razorpay/webhook", content=payload)
    invalid = api.client.post(
        "/billing/razorpay/webhook",
        content=payload,
        headers={"x-razorpay-signature": "0" * 64, "x-razorpay-event-id": "evt_bad"},
    )

    assert missing.status_code == 400
    assert invalid.status_code == 401
    assert api.get_user(user_id).credits == 0


def test_razorpay_subscription_charged_uses_plan_credits(api) -> None:
    user_id = api.create_user(credits=0, subscription_id="sub_001", subscription_status="active")
    payload = json.dumps(
        {
            "event": "subscription.charged",
            "payload": {
                "subscription": {
                    "entity": {
                        "id": "sub_001",
                        "plan_id": "plan_S2DIdCKNcV6TtA",
                        "paid_count": 2,
                        "end_at": int(time.time()) + 86400,
                    }
                }
            },
        }
    ).encode("utf-8")

    response = api.client.post("/billing/razorpay/webhook", content=payload, headers=_razorpay_headers(payload, "evt_c"))

    assert response.json()["status"] == "processed"
    user = api.get_user(user_id)
    assert user.credits == 1235
    assert user.subscription_plan == "studio"
    assert [tx.idempotency_key for tx in api.transactions(user_id)] == ["sub_001_charged_2"]


def test_razorpay_subscription_cancelled_updates_status(api) -> None:
    user_id = api.create_user(subscription_id="sub_002", subscription_status="active", subscription_plan="pro")
    payload = json.dumps(
        {"event": "subscription.cancelled", "payload": {"subscription": {"entity": {"id": "sub_002"}}}}
    ).encode("utf-8")

    response = api.client.post("/billing/razorpay/webhook", content=payload, headers=_razorpay_headers(payload, "evt_x"))

    assert response.json()["status"] == "processed"
    assert api.get_user(user_id).subscription_status == "cancelled"


def test_stripe_subscription_created_sets_plan(api) -> None:
    user_id = api.create_user(stripe_customer_id="cus_test_123")
    event = {
        "id": "evt_stripe_001",
        "type": "customer.subscription.created",
        "data": {
            "object": {
                "id": "sub_stripe_001",
                "customer": "cus_test_123",
                "status": "active",
                "items": {"data": [{"price": {"lookup_key": "pro"}}]},
                "current_period_end": int(time.time()) + 86400,
            }
        },
    }

    first = _post_stripe(api, event)
    second = _post_stripe(api, event)

    assert first.status_code == 200
    assert first.json()["status"] == "processed"
    assert second.json()["duplicate"] is True
    user = api.get_user(user_id)
    assert user.subscription_plan == "pro"
    assert user.subscription_status == "active"
    assert user.subscription_id == "sub_stripe_001"


def test_stripe_checkout_unlocks_plugin(api) -> None:
    user_id = api.create_user()
    event = {
        "id": "evt_stripe_checkout",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "customer": "cus_plugin",
                "client_reference_id": user_id,
                "metadata": {"plugin_purchase": "true"},
            }
        },
    }

    response = _post_stripe(api, event)

    assert response.json()["status"] == "processed"
    user = api.get_user(user_id)
    assert user.plugin_purchased is True
    assert user.stripe_customer_id == "cus_plugin"
    assert [tx.type for tx in api.transactions(user_id)] == ["plugin_purchase"]


def test_stripe_payment_failed_marks_past_due(api) -> None:
    user_id = api.create_user(stripe_customer_id="cus_late", subscription_status="active")

    response = _post_stripe(
        api,
        {"id": "evt_fail", "type": "invoice.payment_failed", "data": {"object": {"customer": "cus_late"}}},
    )

    assert response.json()["status"] == "processed"
    assert api.get_user(user_id).subscription_status == "past_due"


def test_stripe_rejects_invalid_signature(api) -> None:
    response = api.client.post(
        "/billing/stripe/webhook",
        content=b'{"id":"evt","type":"checkout.session.completed"}',
        headers={"stripe-signature": f"t={int(time.time())},v1=deadbeef"},
    )

    assert response.status_code == 400
