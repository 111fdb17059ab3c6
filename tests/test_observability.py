from types import SimpleNamespace

from radio444.core import logger as logger_module
from radio444.core import observability
from radio444.core.errors import SAFE_ERROR_MESSAGE, sanitize_credit_error, sanitize_error


def _settings(dsn: str, *, env: str = "production", rate: float = 0.2) -> SimpleNamespace:
    return SimpleNamespace(
        sentry_dsn=dsn,
        env=env,
        app_name="radio444",
        app_version="0.1.0",
        sentry_traces_sample_rate=rate,
    )


def test_init_sentry_skips_when_dsn_missing(monkeypatch) -> None:
    observability.reset_observability_for_tests()

    called = {"count": 0}

    def fake_init(**kwargs):  # noqa: ARG001
        called["count"] += 1

    monkeypatch.setattr(observability, "_call_sentry_init", fake_init)
    monkeypatch.setattr(observability, "get_settings", lambda: _settings("", env="development", rate=0.0))

    assert observability.init_sentry() is False
    assert called["count"] == 0
    observability.reset_observability_for_tests()


def test_init_sentry_initializes_once(monkeypatch) -> None:
    observability.reset_observability_for_tests()

    calls = []

    def fake_init(**kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(observability, "_call_sentry_init", fake_init)
    monkeypatch.setattr(observability, "get_settings", lambda: _settings("https://abc@example.ingest.sentry.io/1"))

    assert observability.init_sentry() is True
    assert observability.init_sentry() is True
    assert len(calls) == 1
    assert calls[0]["dsn"] == "https://abc@example.ingest.sentry.io/1"
    assert calls[0]["environment"] == "production"
    assert calls[0]["release"] == "radio444@0.1.0"
    assert calls[0]["send_default_pii"] is False
    observability.reset_observability_for_tests()


def test_before_send_scrubs_provider_tokens() -> None:
    event = {
        "message": "call failed with Bearer abc.def",
        "exception": {"values": [{"value": "replicate_failed token=r8_Secret123 status=500"}]},
    }

    scrubbed = observability._before_send(event, {})

    assert scrubbed["message"] == "call failed with [redacted]"
    assert "r8_Secret123" not in scrubbed["exception"]["values"][0]["value"]
    assert scrubbed["exception"]["values"][0]["value"].endswith("status=500")


def test_capture_is_noop_until_initialized(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    captured = []
    monkeypatch.setattr(observability.sentry_sdk, "capture_exception", captured.append)

    observability.capture_exception(RuntimeError("boom"))
    with observability.sentry_scope(user_id="user_1", request_id="req_1"):
        pass

    assert captured == []


def test_sanitize_error_hides_internal_details() -> None:
    message = sanitize_error(RuntimeError("replicate_failed status=500 token=r8_secret"), context="test")

    assert message == SAFE_ERROR_MESSAGE
    assert "r8_secret" not in message


def test_sanitize_credit_error_normalizes_known_messages() -> None:
    assert sanitize_credit_error("Not enough credits for this") == (
        "Insufficient credits. Please add more credits to continue."
    )
    assert sanitize_credit_error("balance row locked") == "Insufficient credits"
    assert sanitize_credit_error(None) == "Insufficient credits"


def test_log_processor_redacts_sensitive_fields() -> None:
    event = logger_module._redact_secrets(
        None,
        "info",
        {
            "event": "replicate_request",
            "authorization": "Bearer r8_abc",
            "error": "upstream said token=r8_abc123",
            "status_code": 401,
        },
    )

    assert event["authorization"] == "[redacted]"
    assert "r8_abc123" not in event["error"]
    assert event["status_code"] == 401
    assert event["event"] == "replicate_request"
