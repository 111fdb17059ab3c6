"""Generation provider integrations."""

from radio444.generation.providers.base import GenerationProvider, Prediction, ProviderError
from radio444.generation.providers.factory import get_generation_provider, reset_generation_provider_cache
from radio444.generation.providers.mock_provider import MockGenerationProvider
from radio444.generation.providers.replicate_provider import ReplicateProvider

__all__ = [
    "GenerationProvider",
    "Prediction",
    "ProviderError",
    "MockGenerationProvider",
    "ReplicateProvider",
    "get_generation_provider",
    "reset_generation_provider_cache",
]
