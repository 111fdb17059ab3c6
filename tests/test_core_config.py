import pytest

from radio444.core.config import get_settings


def _set_minimum_production_env(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "prod-secret-key")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://app:password@db:5432/radio444")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://api.444radio.co.in")
    monkeypatch.setenv("AUDIO_SIGNING_SECRET", "audio-secret-prod")
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", "rzp-webhook-prod")
    monkeypatch.setenv("GENERATION_PROVIDER", "replicate")


def test_requires_secret_key_in_production(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    monkeypatch.setenv("SECRET_KEY", "")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="SECRET_KEY"):
        get_settings()

    get_settings.cache_clear()


def test_loads_environment_values(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./data/test_radio444.sqlite")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/9")
    monkeypatch.setenv("WALLET_USD_PER_CREDIT", "0.05")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.env == "development"
    assert settings.is_production is False
    assert settings.secret_key == "test-secret"
    assert settings.database_url.endswith("test_radio444.sqlite")
    assert settings.redis_url.endswith("/9")
    assert settings.wallet_usd_per_credit == 0.05

    get_settings.cache_clear()


def test_production_settings_load_when_complete(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.is_production is True
    assert settings.generation_provider == "replicate"

    get_settings.cache_clear()


def test_rejects_mock_provider_in_production(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    monkeypatch.setenv("GENERATION_PROVIDER", "mock")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="GENERATION_PROVIDER must not be mock in production"):
        get_settings()

    get_settings.cache_clear()


def test_requires_all_mandatory_production_secrets(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    monkeypatch.setenv("AUDIO_SIGNING_SECRET", "")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="AUDIO_SIGNING_SECRET"):
        get_settings()

    get_settings.cache_clear()


def test_rejects_invalid_observability_limits(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "1.2")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="SENTRY_TRACES_SAMPLE_RATE"):
        get_settings()

    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")
    monkeypatch.setenv("IP_RATE_LIMIT_REQUESTS_PER_WINDOW", "0")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="IP_RATE_LIMIT_REQUESTS_PER_WINDOW"):
        get_settings()

    get_settings.cache_clear()


def test_rejects_invalid_generation_settings(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("GENERATION_PROVIDER", "midjourney")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="GENERATION_PROVIDER must be one of"):
        get_settings()

    monkeypatch.setenv("GENERATION_PROVIDER", "mock")
    monkeypatch.setenv("GENERATION_RATE_LIMIT_PER_MINUTE", "0")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="GENERATION_RATE_LIMIT_PER_MINUTE"):
        get_settings()

    monkeypatch.setenv("GENERATION_RATE_LIMIT_PER_MINUTE", "10")
    monkeypatch.setenv("WALLET_USD_PER_CREDIT", "0")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="WALLET_USD_PER_CREDIT"):
        get_settings()

    get_settings.cache_clear()


def test_requires_bucket_when_object_storage_enabled(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("OBJECT_STORAGE_ENABLED", "true")
    monkeypatch.setenv("S3_BUCKET", " ")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="S3_BUCKET"):
        get_settings()

    get_settings.cache_clear()
