"""Signed audio URLs served by the edge worker.

``sig = hex(HMAC_SHA256(secret, "{key}:{exp}"))`` and the URL is
``{worker_base}/audio/{key}?exp={exp}&sig={sig}``. The worker recomputes the
same digest, so this construction must not change.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Optional
from urllib.parse import quote


def sign_audio_key(key: str, expiry: int, secret: str) -> str:
    if not secret:
        raise ValueError("audio signing secret is not configured")
    message = f"{key}:{int(expiry)}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def build_signed_audio_url(*, worker_base: str, key: str, expiry: int, secret: str) -> str:
    signature = sign_audio_key(key, expiry, secret)
    base = worker_base.rstrip("/")
    return f"{base}/audio/{quote(key, safe='/')}?exp={int(expiry)}&sig={signature}"


def signed_audio_url_for(
    *,
    worker_base: str,
    key: str,
    secret: str,
    ttl_seconds: int,
    now: Optional[int] = None,
) -> tuple[str, int]:
    expiry = int(now if now is not None else time.time()) + ttl_seconds
    return build_signed_audio_url(worker_base=worker_base, key=key, expiry=expiry, secret=secret), expiry


def verify_audio_signature(
    *,
    key: str,
    expiry: int,
    signature: str,
    secret: str,
    now: Optional[int] = None,
) -> bool:
    current = int(now if now is not None else time.time())
    if int(expiry) < current:
        return False
    expected = sign_audio_key(key, expiry, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
