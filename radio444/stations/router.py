"""Live station routes: go live, now playing, WebRTC signalling, chat and reactions."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from radio444.auth.dependencies import require_auth_context
from radio444.auth.jwt import AuthContext
from radio444.core.logger import get_logger
from radio444.realtime.relay import (
    EVENT_CHAT_MESSAGE,
    EVENT_HOST_SIGNAL,
    EVENT_REACTION,
    EVENT_STATION_UPDATE,
    EVENT_VIEWER_SIGNAL,
    publish,
    station_channel,
)
from radio444.schemas.stations import (
    RelayResponse,
    StationListResponse,
    StationMessageRequest,
    StationReactionRequest,
    StationResponse,
    StationSignalRequest,
    StationUpdateRequest,
)
from radio444.storage.db import get_session
from radio444.storage.models import Station, User


router = APIRouter(prefix="/stations", tags=["stations"])
logger = get_logger("radio444.stations")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_station_response(station: Station) -> StationResponse:
    return StationResponse(
        id=station.id,
        user_id=station.user_id,
        username=station.username,
        title=station.title,
        description=station.description,
        is_live=station.is_live,
        listener_count=station.listener_count,
        current_track_id=station.current_track_id,
        current_track_title=station.current_track_title,
        current_track_image=station.current_track_image,
        started_at=station.started_at,
        last_live_at=station.last_live_at,
        channel=station_channel(station.id),
    )


def _get_station(session: Session, station_id: str) -> Station:
    station = session.get(Station, station_id)
    if station is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Station not found")
    return station


def _get_live_station(session: Session, station_id: str) -> Station:
    station = _get_station(session, station_id)
    if not station.is_live:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Station is not live")
    return station


@router.get("", response_model=StationListResponse)
def list_live_stations(session: Session = Depends(get_session)) -> StationListResponse:
    stations = session.scalars(
        select(Station)
        .where(Station.is_live.is_(True))
        .order_by(Station.listener_count.desc(), Station.updated_at.desc())
    ).all()
    return StationListResponse(stations=[to_station_response(station) for station in stations])


@router.get("/by-user/{user_id}", response_model=StationResponse)
def station_by_user(user_id: str, session: Session = Depends(get_session)) -> StationResponse:
    station = session.scalar(select(Station).where(Station.user_id == user_id))
    if station is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Station not found")
    return to_station_response(station)


@router.get("/{station_id}", response_model=StationResponse)
def get_station(station_id: str, session: Session = Depends(get_session)) -> StationResponse:
    return to_station_response(_get_station(session, station_id))


@router.post("", response_model=StationResponse)
def update_station(
    payload: StationUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> StationResponse:
    user = session.get(User, auth.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    station = session.scalar(select(Station).where(Station.user_id == auth.user_id))
    if station is None:
        station = Station(
            user_id=auth.user_id,
            title=f"{user.username or 'Anonymous'}'s Station",
            listener_count=0,
            is_live=False,
        )
        session.add(station)

    now = _now_utc()
    station.username = user.username
    if payload.title is not None:
        station.title = payload.title.strip()
    if payload.description is not None:
        station.description = payload.description.strip() or None
    if payload.current_track is not None:
        station.current_track_id = payload.current_track.id
        station.current_track_title = payload.current_track.title
        station.current_track_image = payload.current_track.image_url

    if payload.is_live:
        if not station.is_live:
            station.started_at = now
        station.is_live = True
        station.last_live_at = now
    else:
        station.is_live = False
        station.listener_count = 0
        station.started_at = None
    station.updated_at = now
    session.commit()

    logger.info("station_updated", station_id=station.id, is_live=station.is_live)
    response = to_station_response(station)
    publish(station_channel(station.id), EVENT_STATION_UPDATE, response.model_dump(mode="json"))
    return response


@router.post("/{station_id}/signal", response_model=RelayResponse)
def relay_signal(
    station_id: str,
    payload: StationSignalRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> RelayResponse:
    station = _get_station(session, station_id)
    if payload.type == "host" and station.user_id != auth.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the host can send host signals")

    event = EVENT_HOST_SIGNAL if payload.type == "host" else EVENT_VIEWER_SIGNAL
    delivered = publish(
        station_channel(station.id),
        event,
        {"from": auth.user_id, "to": payload.to, "signal": payload.signal},
    )
    return RelayResponse(success=True, delivered=delivered)


@router.post("/{station_id}/message", response_model=RelayResponse)
def station_message(
    station_id: str,
    payload: StationMessageRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> RelayResponse:
    station = _get_live_station(session, station_id)
    user = session.get(User, auth.user_id)
    delivered = publish(
        station_channel(station.id),
        EVENT_CHAT_MESSAGE,
        {
            "user_id": auth.user_id,
            "username": user.username if user is not None else None,
            "avatar_url": user.avatar_url if user is not None else None,
            "message": payload.message.strip(),
            "timestamp": _now_utc().isoformat(),
        },
    )
    return RelayResponse(success=True, delivered=delivered)


@router.post("/{station_id}/reaction", response_model=RelayResponse)
def station_reaction(
    station_id: str,
    payload: StationReactionRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> RelayResponse:
    station = _get_live_station(session, station_id)
    delivered = publish(
        station_channel(station.id),
        EVENT_REACTION,
        {"user_id": auth.user_id, "emoji": payload.emoji, "timestamp": _now_utc().isoformat()},
    )
    return RelayResponse(success=True, delivered=delivered)
