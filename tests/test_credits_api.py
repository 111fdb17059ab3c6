from datetime import datetime, timedelta, timezone
from decimal import Decimal
import hashlib
import hmac

import pytest

import radio444.credits.router as credits_router
from radio444.credits.ledger import (
    TX_CREDIT_AWARD,
    InsufficientCreditsError,
    deduct_credits,
    log_transaction,
    refund_credits,
    transfer_credits,
)
from radio444.storage.models import CreditTransaction

from tests.conftest import TEST_RAZORPAY_KEY_SECRET


class _FakeRazorpay:
    def __init__(self, order: dict) -> None:
        self.order = order
        self.fetched = []

    def fetch_order(self, order_id: str) -> dict:
        self.fetched.append(order_id)
        return self.order


def _checkout_signature(order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(TEST_RAZORPAY_KEY_SECRET.encode("utf-8"), message, hashlib.sha256).hexdigest()


def test_balance_reports_credits_and_wallet(api) -> None:
    user_id = api.create_user(credits=12, wallet_balance=Decimal("3.50"), subscription_plan="pro")

    response = api.client.get("/credits", headers=api.auth_headers(user_id))

    assert response.status_code == 200
    body = response.json()
    assert body["credits"] == 12
    assert Decimal(str(body["wallet_balance"])) == Decimal("3.50")
    assert body["subscription_plan"] == "pro"
    assert body["subscription_status"] == "inactive"


def test_balance_requires_session(api) -> None:
    assert api.client.get("/credits").status_code == 401


def test_convert_buys_whole_credits_only(api) -> None:
    user_id = api.create_user(credits=1, wallet_balance=Decimal("1.00"))

    response = api.client.post("/credits/convert", json={"amount_usd": "1.00"}, headers=api.auth_headers(user_id))

    assert response.status_code == 200
    body = response.json()
    assert body["credits_added"] == 28
    assert Decimal(str(body["amount_converted"])) == Decimal("0.98")
    assert Decimal(str(body["new_wallet"])) == Decimal("0.02")
    assert body["new_credits"] == 29
    assert body["message"] == "Converted $0.98 to 28 credits"

    user = api.get_user(user_id)
    assert user.credits == 29
    assert Decimal(str(user.wallet_balance)).quantize(Decimal("0.01")) == Decimal("0.02")
    assert [tx.type for tx in api.transactions(user_id)] == ["wallet_conversion"]


def test_convert_rejects_empty_or_excessive_amounts(api) -> None:
    empty = api.create_user()
    funded = api.create_user(wallet_balance=Decimal("2.00"))

    no_wallet = api.client.post("/credits/convert", json={}, headers=api.auth_headers(empty))
    too_much = api.client.post("/credits/convert", json={"amount_usd": "5.00"}, headers=api.auth_headers(funded))
    too_little = api.client.post("/credits/convert", json={"amount_usd": "0.01"}, headers=api.auth_headers(funded))

    assert no_wallet.status_code == 400
    assert no_wallet.json()["detail"] == "No wallet balance to convert"
    assert too_much.status_code == 400
    assert too_much.json()["detail"].startswith("Amount exceeds wallet balance")
    assert too_little.status_code == 400
    assert api.get_user(funded).credits == 0


def test_redeem_code_once(api) -> None:
    user_id = api.create_user(credits=3)
    headers = api.auth_headers(user_id)

    first = api.client.post("/credits/redeem", json={"code": "porsche"}, headers=headers)
    second = api.client.post("/credits/redeem", json={"code": "PORSCHE"}, headers=headers)
    invalid = api.client.post("/credits/redeem", json={"code": "FREEBIES"}, headers=headers)

    assert first.json() == {"success": True, "credits_added": 100, "credits": 103}
    assert second.status_code == 400
    assert second.json()["detail"] == "Code already redeemed"
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Invalid code"
    assert api.get_user(user_id).credits == 103


def test_transaction_history_paginates_and_filters(api) -> None:
    user_id = api.create_user(credits=50)
    start = datetime(2026, 2, 1, tzinfo=timezone.utc)
    with api.session_factory() as session:
        for index in range(5):
            entry = log_transaction(
                session,
                user_id=user_id,
                amount=index + 1,
                transaction_type=TX_CREDIT_AWARD if index % 2 == 0 else "generation_music",
                balance_after=50,
            )
            entry.created_at = start + timedelta(minutes=index)
        session.commit()

    page_one = api.client.get("/wallet/transactions?page=1&limit=2", headers=api.auth_headers(user_id)).json()
    page_three = api.client.get("/wallet/transactions?page=3&limit=2", headers=api.auth_headers(user_id)).json()
    awards = api.client.get("/wallet/transactions?type=credit_award", headers=api.auth_headers(user_id)).json()

    assert [item["amount"] for item in page_one["transactions"]] == [5, 4]
    assert page_one["pagination"] == {"page": 1, "limit": 2, "total": 5, "total_pages": 3}
    assert [item["amount"] for item in page_three["transactions"]] == [1]
    assert page_one["credits"] == 50
    assert page_one["transactions"][0]["metadata"] == {"source": "app"}
    assert awards["pagination"]["total"] == 3


def test_verify_deposits_wallet_once(api, monkeypatch) -> None:
    user_id = api.create_user(credits=4)
    fake = _FakeRazorpay({"status": "paid", "amount": 42000, "currency": "INR", "notes": {"deposit_usd": "5.00"}})
    monkeypatch.setattr(credits_router, "get_razorpay_client", lambda: fake)
    payload = {
        "razorpay_order_id": "order_abc",
        "razorpay_payment_id": "pay_abc",
        "razorpay_signature": _checkout_signature("order_abc", "pay_abc"),
    }

    first = api.client.post("/credits/verify", json=payload, headers=api.auth_headers(user_id))
    second = api.client.post("/credits/verify", json=payload, headers=api.auth_headers(user_id))

    assert first.status_code == 200
    assert first.json()["already_processed"] is False
    assert Decimal(str(first.json()["wallet_balance"])) == Decimal("5.00")
    assert second.json()["already_processed"] is True
    assert Decimal(str(second.json()["deposit_usd"])) == Decimal("0")
    assert Decimal(str(api.get_user(user_id).wallet_balance)) == Decimal("5.00")
    assert api.get_user(user_id).credits == 4
    assert fake.fetched == ["order_abc", "order_abc"]


def test_verify_rejects_bad_signature_and_unpaid_order(api, monkeypatch) -> None:
    user_id = api.create_user()
    monkeypatch.setattr(credits_router, "get_razorpay_client", lambda: _FakeRazorpay({"status": "created"}))

    bad_signature = api.client.post(
        "/credits/verify",
        json={"razorpay_order_id": "order_x", "razorpay_payment_id": "pay_x", "razorpay_signature": "deadbeef"},
        headers=api.auth_headers(user_id),
    )
    unpaid = api.client.post(
        "/credits/verify",
        json={
            "razorpay_order_id": "order_x",
            "razorpay_payment_id": "pay_x",
            "razorpay_signature": _checkout_signature("order_x", "pay_x"),
        },
        headers=api.auth_headers(user_id),
    )

    assert bad_signature.status_code == 400
    assert bad_signature.json()["detail"] == "Payment verification failed"
    assert unpaid.status_code == 400
    assert unpaid.json()["detail"] == "Order has not been paid"


def test_deduct_is_conditional_on_balance(api) -> None:
    user_id = api.create_user(credits=3)

    with api.session_factory() as session:
        ok = deduct_credits(session, user_id=user_id, amount=2)
        blocked = deduct_credits(session, user_id=user_id, amount=2)
        missing = deduct_credits(session, user_id="user_missing", amount=1)
        session.commit()

    assert ok.success is True
    assert ok.new_credits == 1
    assert blocked.success is False
    assert blocked.new_credits == 1
    assert blocked.error_message == "Insufficient credits"
    assert missing.error_message == "User not found"
    assert api.get_user(user_id).credits == 1
    assert api.get_user(user_id).total_generated == 1


def test_refund_logs_transaction(api) -> None:
    user_id = api.create_user(credits=0)

    with api.session_factory() as session:
        balance = refund_credits(session, user_id=user_id, amount=5, reason="Refund: test", metadata={"media_id": "m1"})
        unchanged = refund_credits(session, user_id=user_id, amount=0, reason="noop")
        session.commit()

    assert balance == 5
    assert unchanged == 5
    rows = api.transactions(user_id)
    assert len(rows) == 1
    assert isinstance(rows[0], CreditTransaction)
    assert rows[0].type == "credit_refund"
    assert rows[0].amount == 5


def _transfer(session, sender: str, recipient: str, amount: int, key: str = "transfer-1"):
    return transfer_credits(
        session,
        from_user_id=sender,
        to_user_id=recipient,
        amount=amount,
        idempotency_key=key,
        debit_type="earn_purchase",
        credit_type="earn_sale",
        description="test transfer",
    )


def test_transfer_moves_credits_once_per_key(api) -> None:
    sender = api.create_user(credits=5)
    recipient = api.create_user(credits=1)

    with api.session_factory() as session:
        first = _transfer(session, sender, recipient, 3)
        session.commit()
        replay = _transfer(session, sender, recipient, 3)

    assert (first.applied, first.from_balance, first.to_balance) == (True, 2, 4)
    assert (replay.applied, replay.from_balance, replay.to_balance) == (False, 2, 4)
    assert [tx.idempotency_key for tx in api.transactions(sender)] == ["transfer-1:debit"]
    assert [tx.idempotency_key for tx in api.transactions(recipient)] == ["transfer-1:credit"]
    assert api.get_user(sender).total_generated == 0


def test_transfer_rejects_overdraft_self_and_unknown_recipient(api) -> None:
    sender = api.create_user(credits=1)
    recipient = api.create_user()

    with api.session_factory() as session:
        with pytest.raises(InsufficientCreditsError) as excinfo:
            _transfer(session, sender, recipient, 2)
        with pytest.raises(ValueError):
            _transfer(session, sender, sender, 1)
        with pytest.raises(LookupError):
            _transfer(session, sender, "user_missing", 1)
        session.rollback()

    assert (excinfo.value.needed, excinfo.value.available) == (2, 1)
    assert api.get_user(sender).credits == 1
    assert api.get_user(recipient).credits == 0
    assert api.transactions(sender) == []
