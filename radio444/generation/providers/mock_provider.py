"""Deterministic in-memory generation provider for local/dev usage."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional

from radio444.generation.providers.base import GenerationProvider, Prediction, ProviderError
from radio444.generation.states import (
    FINAL_PREDICTION_STATUSES,
    PREDICTION_CANCELED,
    PREDICTION_STARTING,
    PREDICTION_SUCCEEDED,
)


class MockGenerationProvider(GenerationProvider):
    """Predictions start as ``starting`` and succeed on the first poll."""

    provider_name = "mock"

    def __init__(self, *, complete_on_poll: bool = True) -> None:
        self._complete_on_poll = complete_on_poll
        self._predictions: Dict[str, Prediction] = {}
        self._inputs: Dict[str, Dict[str, Any]] = {}
        self._sequence = 0

    @staticmethod
    def _output_for(prediction_id: str, payload: Dict[str, Any]) -> str:
        if "video" in payload:
            extension = "mp4"
        else:
            extension = str(payload.get("output_format") or payload.get("audio_format") or "mp3")
        return f"https://replicate.delivery/mock/{prediction_id}.{extension}"

    def create_prediction(
        self,
        *,
        model: str,
        version: Optional[str],
        input: Dict[str, Any],
        webhook_url: Optional[str] = None,
    ) -> Prediction:
        self._sequence += 1
        seed_source = f"{model}:{version or ''}:{json.dumps(input, sort_keys=True, default=str)}:{self._sequence}"
        prediction_id = "mock-" + hashlib.sha1(seed_source.encode("utf-8")).hexdigest()[:20]
        prediction = Prediction(id=prediction_id, status=PREDICTION_STARTING, provider=self.provider_name, model=model)
        self._predictions[prediction_id] = prediction
        self._inputs[prediction_id] = dict(input)
        return prediction

    def _lookup(self, prediction_id: str) -> Prediction:
        prediction = self._predictions.get(prediction_id)
        if prediction is None:
            raise ProviderError(f"mock_prediction_not_found id={prediction_id}")
        return prediction

    def get_prediction(self, prediction_id: str) -> Prediction:
        prediction = self._lookup(prediction_id)
        if self._complete_on_poll and prediction.status not in FINAL_PREDICTION_STATUSES:
            prediction = self.set_outcome(
                prediction_id,
                status=PREDICTION_SUCCEEDED,
                output=self._output_for(prediction_id, self._inputs.get(prediction_id, {})),
            )
        return prediction

    def cancel_prediction(self, prediction_id: str) -> Prediction:
        prediction = self._lookup(prediction_id)
        if prediction.status in FINAL_PREDICTION_STATUSES:
            return prediction
        return self.set_outcome(prediction_id, status=PREDICTION_CANCELED)

    def set_outcome(
        self,
        prediction_id: str,
        *,
        status: str,
        output: Any = None,
        error: Optional[str] = None,
    ) -> Prediction:
        current = self._lookup(prediction_id)
        updated = Prediction(
            id=prediction_id,
            status=status,
            provider=self.provider_name,
            output=output,
            error=error,
            model=current.model,
        )
        self._predictions[prediction_id] = updated
        return updated
