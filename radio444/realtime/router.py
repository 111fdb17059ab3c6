"""Relay channel authorisation and presence webhooks."""

from __future__ import annotations

import json
from typing import Any, Dict
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import update
from sqlalchemy.orm import Session

from radio444.auth.dependencies import require_auth_context
from radio444.auth.jwt import AuthContext
from radio444.core.logger import get_logger
from radio444.core.metrics import record_webhook_event
from radio444.realtime import relay
from radio444.schemas.stations import RealtimeWebhookResponse
from radio444.storage.db import get_session
from radio444.storage.models import Station, User


router = APIRouter(prefix="/realtime", tags=["realtime"])
logger = get_logger("radio444.realtime.api")


async def _read_auth_params(request: Request) -> Dict[str, str]:
    body = await request.body()
    if "application/json" in request.headers.get("content-type", ""):
        try:
            parsed = json.loads(body or b"{}")
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from exc
        if not isinstance(parsed, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
        return {key: str(value) for key, value in parsed.items()}
    return {key: values[0] for key, values in parse_qs(body.decode("utf-8")).items() if values}


def _require_relay() -> relay.Relay:
    active = relay.get_relay()
    if active is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Realtime relay is not configured")
    return active


@router.post("/auth")
async def authorize_channel(
    request: Request,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    params = await _read_auth_params(request)
    socket_id = params.get("socket_id", "")
    channel = params.get("channel_name", "")
    if not socket_id or not channel:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="socket_id and channel_name are required")

    active = _require_relay()
    if channel.startswith(relay.USER_CHANNEL_PREFIX):
        if channel != relay.user_channel(auth.user_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden channel")
        return active.authorize(channel=channel, socket_id=socket_id)

    if channel.startswith(relay.STATION_CHANNEL_PREFIX):
        station_id = channel[len(relay.STATION_CHANNEL_PREFIX):]
        if session.get(Station, station_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Station not found")
        user = session.get(User, auth.user_id)
        user_data = {
            "user_id": auth.user_id,
            "user_info": {
                "username": user.username if user is not None else None,
                "avatar_url": user.avatar_url if user is not None else None,
            },
        }
        return active.authorize(channel=channel, socket_id=socket_id, user_data=user_data)

    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden channel")


def _apply_presence_event(session: Session, event: Dict[str, Any]) -> bool:
    name = event.get("name")
    channel = str(event.get("channel") or "")
    if name not in {"member_added", "member_removed"} or not channel.startswith(relay.STATION_CHANNEL_PREFIX):
        return False

    station_id = channel[len(relay.STATION_CHANNEL_PREFIX):]
    station = session.get(Station, station_id)
    if station is None or str(event.get("user_id") or "") == station.user_id:
        return False

    statement = update(Station).where(Station.id == station_id)
    if name == "member_added":
        statement = statement.values(listener_count=Station.listener_count + 1)
    else:
        statement = statement.where(Station.listener_count > 0).values(listener_count=Station.listener_count - 1)
    session.execute(statement.execution_options(synchronize_session="fetch"))
    return True


@router.post("/webhook", response_model=RealtimeWebhookResponse)
async def presence_webhook(request: Request, session: Session = Depends(get_session)) -> RealtimeWebhookResponse:
    active = _require_relay()
    body = (await request.body()).decode("utf-8")
    webhook = active.validate_webhook(
        key=request.headers.get("x-pusher-key", ""),
        signature=request.headers.get("x-pusher-signature", ""),
        body=body,
    )
    if webhook is None:
        record_webhook_event(provider="relay", status="invalid_signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    processed = 0
    for event in webhook.get("events") or []:
        if isinstance(event, dict) and _apply_presence_event(session, event):
            processed += 1
    session.commit()

    record_webhook_event(provider="relay", status="processed")
    logger.info("presence_webhook_processed", processed=processed)
    return RealtimeWebhookResponse(processed=processed)
