"""Replicate predictions API client."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from radio444.generation.providers.base import GenerationProvider, Prediction, ProviderError
from radio444.generation.states import canonicalize_prediction_status


class ReplicateProvider(GenerationProvider):
    provider_name = "replicate"

    def __init__(
        self,
        *,
        api_token: str,
        base_url: str = "https://api.replicate.com/v1",
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_token = api_token.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self._api_token:
            raise ProviderError("replicate_api_token_missing")

        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                response = self._client.request(method, url, headers=self._headers(), json=payload)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = client.request(method, url, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(f"replicate_request_failed path={path}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise ProviderError(f"replicate_failed status={response.status_code} detail={detail}")

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("replicate_invalid_json_response") from exc
        if not isinstance(body, dict) or not body.get("id"):
            raise ProviderError("replicate_missing_prediction_id")
        return body

    def _to_prediction(self, body: Dict[str, Any]) -> Prediction:
        error = body.get("error")
        return Prediction(
            id=str(body["id"]),
            status=canonicalize_prediction_status(body.get("status")),
            provider=self.provider_name,
            output=body.get("output"),
            error=str(error) if error else None,
            model=body.get("model"),
        )

    def create_prediction(
        self,
        *,
        model: str,
        version: Optional[str],
        input: Dict[str, Any],
        webhook_url: Optional[str] = None,
    ) -> Prediction:
        payload: Dict[str, Any] = {"input": input}
        if webhook_url:
            payload["webhook"] = webhook_url
            payload["webhook_events_filter"] = ["completed"]

        if version:
            payload["version"] = version
            body = self._request("POST", "/predictions", payload)
        else:
            body = self._request("POST", f"/models/{model}/predictions", payload)
        return self._to_prediction(body)

    def get_prediction(self, prediction_id: str) -> Prediction:
        return self._to_prediction(self._request("GET", f"/predictions/{prediction_id}"))

    def cancel_prediction(self, prediction_id: str) -> Prediction:
        return self._to_prediction(self._request("POST", f"/predictions/{prediction_id}/cancel"))
