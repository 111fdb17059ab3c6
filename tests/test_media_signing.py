from datetime import datetime, timezone
import hashlib
import hmac

import pytest

from radio444.media.signing import (
    build_signed_audio_url,
    sign_audio_key,
    signed_audio_url_for,
    verify_audio_signature,
)
from radio444.media.track_ids import generate_track_id, is_valid_track_id


def test_signature_matches_worker_construction() -> None:
    expected = hmac.new(b"edge-secret", b"user/audio/track.mp3:1700000000", hashlib.sha256).hexdigest()

    assert sign_audio_key("user/audio/track.mp3", 1700000000, "edge-secret") == expected


def test_signed_url_layout() -> None:
    url = build_signed_audio_url(
        worker_base="https://audio.444radio.co.in/",
        key="user 1/audio/track.mp3",
        expiry=1700000000,
        secret="edge-secret",
    )

    assert url.startswith("https://audio.444radio.co.in/audio/user%201/audio/track.mp3?exp=1700000000&sig=")
    assert url.endswith(sign_audio_key("user 1/audio/track.mp3", 1700000000, "edge-secret"))


def test_signed_url_for_uses_ttl() -> None:
    url, expiry = signed_audio_url_for(
        worker_base="https://audio.example",
        key="a/b.mp3",
        secret="edge-secret",
        ttl_seconds=3600,
        now=1000,
    )

    assert expiry == 4600
    assert "exp=4600" in url


def test_verify_signature_rejects_tampering_and_expiry() -> None:
    signature = sign_audio_key("a/b.mp3", 2000, "edge-secret")

    assert verify_audio_signature(key="a/b.mp3", expiry=2000, signature=signature, secret="edge-secret", now=1500)
    assert not verify_audio_signature(key="a/c.mp3", expiry=2000, signature=signature, secret="edge-secret", now=1500)
    assert not verify_audio_signature(key="a/b.mp3", expiry=2000, signature=signature, secret="edge-secret", now=2001)


def test_signing_requires_secret() -> None:
    with pytest.raises(ValueError):
        sign_audio_key("a/b.mp3", 2000, "")


def test_track_id_format() -> None:
    track_id = generate_track_id("user_abc", now=datetime(2026, 3, 1, tzinfo=timezone.utc))
    user_hash = hashlib.md5(b"user_abc").hexdigest()[:4].upper()

    assert track_id.startswith(f"444-2026-{user_hash}-")
    assert is_valid_track_id(track_id)


def test_track_ids_are_unique_per_call() -> None:
    ids = {generate_track_id("user_abc") for _ in range(20)}

    assert len(ids) == 20


def test_track_id_validation() -> None:
    assert not is_valid_track_id(None)
    assert not is_valid_track_id("444-26-ABCD-123456")
    assert not is_valid_track_id("444-2026-abcd-123456")
