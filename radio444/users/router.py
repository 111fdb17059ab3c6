"""Profile, follow and auth-provider webhook routes."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from radio444.auth.dependencies import get_optional_auth_context, require_auth_context
from radio444.auth.jwt import AuthContext
from radio444.billing.signatures import WebhookSignatureError, parse_json_object, verify_svix_signature
from radio444.core.config import get_settings
from radio444.core.logger import get_logger
from radio444.core.metrics import record_webhook_event
from radio444.schemas.users import (
    AuthWebhookResponse,
    FollowResponse,
    PublicProfileResponse,
    UserProfileResponse,
    UserUpdateRequest,
)
from radio444.storage.db import get_session
from radio444.storage.models import User
from radio444.users.service import (
    UsernameTakenError,
    delete_user,
    follow_counts,
    follow_user,
    is_following,
    public_track_count,
    unfollow_user,
    update_profile,
    upsert_user_from_auth,
)


router = APIRouter(tags=["users"])
logger = get_logger("radio444.users.api")


def _get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _profile(user: User) -> UserProfileResponse:
    return UserProfileResponse(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        bio=user.bio,
        credits=user.credits,
        wallet_balance=Decimal(str(user.wallet_balance or 0)),
        total_generated=user.total_generated,
        subscription_plan=user.subscription_plan,
        subscription_status=user.subscription_status,
        plugin_purchased=user.plugin_purchased,
        created_at=user.created_at,
    )


@router.get("/users/me", response_model=UserProfileResponse)
def get_me(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> UserProfileResponse:
    return _profile(_get_user(session, auth.user_id))


@router.patch("/users/me", response_model=UserProfileResponse)
def update_me(
    payload: UserUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> UserProfileResponse:
    user = _get_user(session, auth.user_id)
    try:
        update_profile(
            session,
            user=user,
            username=payload.username,
            full_name=payload.full_name,
            bio=payload.bio,
            avatar_url=payload.avatar_url,
        )
    except UsernameTakenError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _profile(user)


@router.get("/users/{user_id}", response_model=PublicProfileResponse)
def get_public_profile(
    user_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> PublicProfileResponse:
    user = _get_user(session, user_id)
    followers, following = follow_counts(session, user_id=user.id)
    return PublicProfileResponse(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        bio=user.bio,
        followers=followers,
        following=following,
        tracks=public_track_count(session, user_id=user.id),
        is_following=auth is not None and is_following(session, follower_id=auth.user_id, following_id=user.id),
        created_at=user.created_at,
    )


@router.post("/users/{user_id}/follow", response_model=FollowResponse)
def follow(
    user_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> FollowResponse:
    if user_id == auth.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot follow yourself")
    _get_user(session, user_id)
    follow_user(session, follower_id=auth.user_id, following_id=user_id)
    followers, _ = follow_counts(session, user_id=user_id)
    return FollowResponse(following=True, followers=followers)


@router.delete("/users/{user_id}/follow", response_model=FollowResponse)
def unfollow(
    user_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> FollowResponse:
    if user_id == auth.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot follow yourself")
    _get_user(session, user_id)
    unfollow_user(session, follower_id=auth.user_id, following_id=user_id)
    followers, _ = follow_counts(session, user_id=user_id)
    return FollowResponse(following=False, followers=followers)


@router.post("/webhooks/auth", response_model=AuthWebhookResponse)
async def auth_webhook(request: Request, session: Session = Depends(get_session)) -> AuthWebhookResponse:
    settings = get_settings()
    payload = await request.body()
    try:
        verify_svix_signature(
            payload=payload,
            msg_id=request.headers.get("svix-id", ""),
            timestamp=request.headers.get("svix-timestamp", ""),
            signature_header=request.headers.get("svix-signature", ""),
            secret=settings.auth_webhook_secret,
            tolerance_seconds=settings.auth_webhook_tolerance_seconds,
        )
    except WebhookSignatureError as exc:
        record_webhook_event(provider="auth", status="invalid_signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        event = parse_json_object(payload, required=("type", "data"))
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    event_type = str(event["type"])
    data = event["data"] if isinstance(event["data"], dict) else {}
    if event_type in {"user.created", "user.updated"}:
        try:
            user = upsert_user_from_auth(session, data)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        record_webhook_event(provider="auth", status="processed")
        return AuthWebhookResponse(status="processed", event_type=event_type, user_id=user.id)

    if event_type == "user.deleted":
        user_id = str(data.get("id") or "")
        deleted = delete_user(session, user_id=user_id) if user_id else False
        record_webhook_event(provider="auth", status="processed" if deleted else "ignored")
        return AuthWebhookResponse(
            status="processed" if deleted else "ignored",
            event_type=event_type,
            user_id=user_id or None,
        )

    logger.info("auth_webhook_ignored", event_type=event_type)
    record_webhook_event(provider="auth", status="ignored")
    return AuthWebhookResponse(status="ignored", event_type=event_type)
