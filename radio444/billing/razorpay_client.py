"""Razorpay REST client for orders and subscriptions."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional

import httpx

from radio444.core.config import get_settings


class RazorpayAPIError(RuntimeError):
    """Raised when the Razorpay API cannot be reached or rejects a request."""


class RazorpayClient:
    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._key_id = key_id.strip()
        self._key_secret = key_secret.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._key_id and self._key_secret)

    def _get(self, path: str) -> Dict[str, Any]:
        if not self.configured:
            raise RazorpayAPIError("razorpay_credentials_missing")

        url = f"{self._base_url}{path}"
        auth = (self._key_id, self._key_secret)
        try:
            if self._client is not None:
                response = self._client.get(url, auth=auth)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = client.get(url, auth=auth)
        except httpx.HTTPError as exc:
            raise RazorpayAPIError(f"razorpay_request_failed path={path}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 200:
                detail = detail[:200] + "..."
            raise RazorpayAPIError(f"razorpay_api_error status={response.status_code} detail={detail}")

        try:
            body = response.json()
        except Exception as exc:  # pragma: no cover
            raise RazorpayAPIError("razorpay_invalid_json_response") from exc
        if not isinstance(body, dict):
            raise RazorpayAPIError("razorpay_invalid_payload")
        return body

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return self._get(f"/orders/{order_id}")

    def fetch_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._get(f"/subscriptions/{subscription_id}")

    def fetch_customer(self, customer_id: str) -> Dict[str, Any]:
        return self._get(f"/customers/{customer_id}")


@lru_cache(maxsize=1)
def get_razorpay_client() -> RazorpayClient:
    settings = get_settings()
    return RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_api_base_url,
        timeout_seconds=settings.razorpay_api_timeout_seconds,
    )
