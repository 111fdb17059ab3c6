"""Factory to resolve the active generation provider."""

from __future__ import annotations

from functools import lru_cache

from radio444.core.config import get_settings
from radio444.generation.providers.base import GenerationProvider
from radio444.generation.providers.mock_provider import MockGenerationProvider
from radio444.generation.providers.replicate_provider import ReplicateProvider


@lru_cache(maxsize=1)
def get_generation_provider() -> GenerationProvider:
    settings = get_settings()
    provider = settings.generation_provider.strip().lower()
    if provider == "replicate":
        return ReplicateProvider(
            api_token=settings.replicate_api_token,
            base_url=settings.replicate_api_base_url,
            timeout_seconds=settings.replicate_timeout_seconds,
        )
    return MockGenerationProvider()


def reset_generation_provider_cache() -> None:
    get_generation_provider.cache_clear()
