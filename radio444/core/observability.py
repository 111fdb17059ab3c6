"""Sentry bootstrap and request scoping."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from radio444.core.config import get_settings
from radio444.core.logger import get_logger, scrub_secrets


logger = get_logger("radio444.observability")

_SENTRY_INITIALIZED = False


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    del hint
    for exception in (event.get("exception") or {}).get("values") or []:
        if isinstance(exception.get("value"), str):
            exception["value"] = scrub_secrets(exception["value"])
    message = event.get("message")
    if isinstance(message, str):
        event["message"] = scrub_secrets(message)
    return event


def _call_sentry_init(**kwargs: Any) -> None:
    sentry_sdk.init(**kwargs)


def init_sentry() -> bool:
    """Initialize Sentry once when a DSN is configured."""

    global _SENTRY_INITIALIZED
    if _SENTRY_INITIALIZED:
        return True

    settings = get_settings()
    dsn = settings.sentry_dsn.strip()
    if not dsn:
        return False

    _call_sentry_init(
        dsn=dsn,
        environment=settings.env,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        before_send=_before_send,
        integrations=[FastApiIntegration()],
    )
    _SENTRY_INITIALIZED = True
    logger.info("sentry_initialized", env=settings.env, traces_sample_rate=settings.sentry_traces_sample_rate)
    return True


@contextmanager
def sentry_scope(*, user_id: str | None = None, request_id: str | None = None) -> Iterator[None]:
    if not _SENTRY_INITIALIZED:
        yield
        return

    with sentry_sdk.new_scope() as scope:
        if user_id:
            scope.set_user({"id": user_id})
        if request_id:
            scope.set_tag("request_id", request_id)
        yield


def capture_exception(exc: BaseException) -> None:
    if _SENTRY_INITIALIZED:
        sentry_sdk.capture_exception(exc)


def reset_observability_for_tests() -> None:
    global _SENTRY_INITIALIZED
    _SENTRY_INITIALIZED = False
