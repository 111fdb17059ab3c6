"""Provider contracts for asynchronous generation backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


class ProviderError(RuntimeError):
    """Raised when a generation provider rejects or fails a request."""


@dataclass(frozen=True)
class Prediction:
    id: str
    status: str
    provider: str
    output: Any = None
    error: Optional[str] = None
    model: Optional[str] = None


class GenerationProvider(Protocol):
    provider_name: str

    def create_prediction(
        self,
        *,
        model: str,
        version: Optional[str],
        input: Dict[str, Any],
        webhook_url: Optional[str] = None,
    ) -> Prediction:
        raise NotImplementedError

    def get_prediction(self, prediction_id: str) -> Prediction:
        raise NotImplementedError

    def cancel_prediction(self, prediction_id: str) -> Prediction:
        raise NotImplementedError
