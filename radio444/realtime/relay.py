"""Pusher-backed pub/sub relay for job notifications and live stations."""

from __future__ import annotations

from functools import lru_cache
import json
from typing import Any, Dict, Optional

import pusher

from radio444.core.config import get_settings
from radio444.core.logger import get_logger
from radio444.core.metrics import record_relay_publish


EVENT_JOB_COMPLETED = "job:completed"
EVENT_JOB_FAILED = "job:failed"
EVENT_JOB_PROGRESS = "job:progress"
EVENT_HOST_SIGNAL = "host-signal"
EVENT_VIEWER_SIGNAL = "viewer-signal"
EVENT_CHAT_MESSAGE = "chat-message"
EVENT_REACTION = "reaction"
EVENT_STATION_UPDATE = "station:update"

USER_CHANNEL_PREFIX = "private-user-"
STATION_CHANNEL_PREFIX = "presence-station-"

logger = get_logger("radio444.realtime")


def user_channel(user_id: str) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


def station_channel(station_id: str) -> str:
    return f"{STATION_CHANNEL_PREFIX}{station_id}"


class Relay:
    def __init__(self, client: Any) -> None:
        self._client = client

    def trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        self._client.trigger(channel, event, data)

    def authorize(
        self,
        *,
        channel: str,
        socket_id: str,
        user_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return self._client.authenticate(channel=channel, socket_id=socket_id, custom_data=user_data)

    def validate_webhook(self, *, key: str, signature: str, body: str) -> Optional[Dict[str, Any]]:
        return self._client.validate_webhook(key=key, signature=signature, body=body)


@lru_cache(maxsize=1)
def get_relay() -> Optional[Relay]:
    """Configured relay, or None when Pusher credentials are missing."""

    settings = get_settings()
    if not (settings.pusher_app_id and settings.pusher_key and settings.pusher_secret):
        return None
    client = pusher.Pusher(
        app_id=settings.pusher_app_id,
        key=settings.pusher_key,
        secret=settings.pusher_secret,
        cluster=settings.pusher_cluster,
        ssl=True,
    )
    return Relay(client)


def reset_relay_cache() -> None:
    get_relay.cache_clear()


def publish(channel: str, event: str, data: Dict[str, Any]) -> bool:
    relay = get_relay()
    if relay is None:
        record_relay_publish(event=event, outcome="disabled")
        return False

    try:
        relay.trigger(channel, event, json.loads(json.dumps(data, default=str)))
    except Exception as exc:
        logger.warning("relay_publish_failed", channel=channel, relay_event=event, error=str(exc))
        record_relay_publish(event=event, outcome="error")
        return False

    record_relay_publish(event=event, outcome="sent")
    return True
