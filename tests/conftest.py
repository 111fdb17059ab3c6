from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import json
from typing import Any, Dict, Iterator, List, Optional, Tuple
import uuid

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import radio444.api.main as api_main
import radio444.realtime.relay as relay_module
from radio444.auth.jwt import AuthContext, create_access_token
from radio444.billing.plans import load_plans
from radio444.billing.razorpay_client import get_razorpay_client
from radio444.core.config import get_settings
from radio444.core.metrics import reset_metrics_for_tests
from radio444.core.rate_limit import get_rate_limiter
from radio444.generation.providers import MockGenerationProvider, get_generation_provider
from radio444.storage.db import Base, get_session, load_models
from radio444.storage.models import CreditTransaction, User
from radio444.storage.objects import reset_object_storage_cache


TEST_SECRET_KEY = "radio444-test-secret-key-0123456789abcdef"
TEST_WEBHOOK_TOKEN = "generation-hook-token"
TEST_AUDIO_SECRET = "audio-signing-secret"
TEST_RAZORPAY_WEBHOOK_SECRET = "rzp-webhook-secret"
TEST_RAZORPAY_KEY_SECRET = "rzp-key-secret"
TEST_STRIPE_WEBHOOK_SECRET = "whsec_stripe_test_secret_1234567890"
# base64("radio444-auth-webhook-secret")
TEST_AUTH_WEBHOOK_SECRET = "whsec_cmFkaW80NDQtYXV0aC13ZWJob29rLXNlY3JldA=="
VALID_RELAY_SIGNATURE = "valid-relay-signature"


class FakeRelay:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail_next = False

    def trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("relay unavailable")
        self.events.append((channel, event, data))

    def authorize(
        self,
        *,
        channel: str,
        socket_id: str,
        user_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"auth": f"test-key:{socket_id}:{channel}"}
        if user_data is not None:
            payload["channel_data"] = json.dumps(user_data)
        return payload

    def validate_webhook(self, *, key: str, signature: str, body: str) -> Optional[Dict[str, Any]]:
        del key
        if signature != VALID_RELAY_SIGNATURE:
            return None
        return json.loads(body)

    def named(self, event: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [item for item in self.events if item[1] == event]


@dataclass
class ApiTestContext:
    client: TestClient
    session_factory: sessionmaker
    provider: MockGenerationProvider
    relay: FakeRelay
    created_users: List[str] = field(default_factory=list)

    def create_user(
        self,
        user_id: Optional[str] = None,
        *,
        credits: int = 0,
        username: Optional[str] = None,
        **fields: Any,
    ) -> str:
        user_id = user_id or f"user_{uuid.uuid4().hex[:12]}"
        wallet_balance = fields.pop("wallet_balance", Decimal("0.00"))
        with self.session_factory() as session:
            user = User(
                id=user_id,
                email=f"{user_id}@444radio.test",
                username=username,
                credits=credits,
                wallet_balance=wallet_balance,
                **fields,
            )
            session.add(user)
            session.commit()
        self.created_users.append(user_id)
        return user_id

    def auth_headers(self, user_id: str) -> Dict[str, str]:
        token, _ = create_access_token(AuthContext(user_id=user_id, email=f"{user_id}@444radio.test"))
        return {"Authorization": f"Bearer {token}"}

    def get_user(self, user_id: str) -> User:
        with self.session_factory() as session:
            user = session.get(User, user_id)
            assert user is not None
            return user

    def transactions(self, user_id: str) -> List[CreditTransaction]:
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(CreditTransaction)
                    .where(CreditTransaction.user_id == user_id)
                    .order_by(CreditTransaction.created_at.asc())
                ).all()
            )


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_rate_limiter.cache_clear()
    load_plans.cache_clear()
    get_razorpay_client.cache_clear()
    reset_object_storage_cache()
    get_generation_provider.cache_clear()
    relay_module.reset_relay_cache()


def build_session_factory() -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def api(monkeypatch) -> Iterator[ApiTestContext]:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET_KEY)
    monkeypatch.setenv("AUTH_JWKS_URL", "")
    monkeypatch.setenv("AUTH_ISSUER", "")
    monkeypatch.setenv("GENERATION_PROVIDER", "mock")
    monkeypatch.setenv("GENERATION_WEBHOOK_TOKEN", TEST_WEBHOOK_TOKEN)
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "")
    monkeypatch.setenv("AUDIO_SIGNING_SECRET", TEST_AUDIO_SECRET)
    monkeypatch.setenv("AUDIO_WORKER_BASE_URL", "https://audio.444radio.test")
    monkeypatch.setenv("OBJECT_STORAGE_ENABLED", "false")
    monkeypatch.setenv("PLANS_FILE_PATH", "config/plans.yaml")
    monkeypatch.setenv("RAZORPAY_KEY_ID", "")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", TEST_RAZORPAY_KEY_SECRET)
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", TEST_RAZORPAY_WEBHOOK_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", TEST_STRIPE_WEBHOOK_SECRET)
    monkeypatch.setenv("AUTH_WEBHOOK_SECRET", TEST_AUTH_WEBHOOK_SECRET)
    _clear_caches()
    reset_metrics_for_tests()

    session_factory = build_session_factory()
    provider = MockGenerationProvider()
    relay = FakeRelay()

    def override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    api_main.app.dependency_overrides[get_generation_provider] = lambda: provider
    monkeypatch.setattr(relay_module, "get_relay", lambda: relay)

    context = ApiTestContext(
        client=TestClient(api_main.app),
        session_factory=session_factory,
        provider=provider,
        relay=relay,
    )
    yield context

    api_main.app.dependency_overrides.clear()
    # Restore patched cache-backed factories before clearing their caches.
    monkeypatch.undo()
    _clear_caches()
