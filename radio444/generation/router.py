"""Generation request, status polling and provider callback routes."""

from __future__ import annotations

import hmac
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from radio444.auth.dependencies import require_auth_context, require_rate_limited_user
from radio444.auth.jwt import AuthContext
from radio444.core.config import get_settings
from radio444.core.errors import sanitize_credit_error, sanitize_error
from radio444.core.logger import get_logger
from radio444.credits.ledger import InsufficientCreditsError, get_balance
from radio444.generation.catalog import GenerationValidationError
from radio444.generation.providers import GenerationProvider, Prediction, get_generation_provider
from radio444.generation.service import GenerationError, apply_prediction, refresh_media_status, request_generation
from radio444.generation.states import canonicalize_prediction_status
from radio444.schemas.generation import (
    GenerationAcceptedResponse,
    GenerationStatusResponse,
    GenerationWebhookResponse,
)
from radio444.storage.db import get_session
from radio444.storage.models import MediaItem


router = APIRouter(prefix="/generate", tags=["generation"])
logger = get_logger("radio444.generation.api")


@router.post("/webhook", response_model=GenerationWebhookResponse)
def generation_webhook(
    payload: Dict[str, Any] = Body(...),
    token: str = Query(default=""),
    session: Session = Depends(get_session),
) -> GenerationWebhookResponse:
    expected = get_settings().generation_webhook_token
    if not expected or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")

    prediction_id = str(payload.get("id") or "").strip()
    if not prediction_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing prediction id")

    error = payload.get("error")
    prediction = Prediction(
        id=prediction_id,
        status=canonicalize_prediction_status(payload.get("status")),
        provider="replicate",
        output=payload.get("output"),
        error=str(error) if error else None,
    )
    matched = apply_prediction(session, prediction)
    return GenerationWebhookResponse(status=prediction.status, matched=matched)


@router.get("/status/{media_id}", response_model=GenerationStatusResponse)
def generation_status(
    media_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> GenerationStatusResponse:
    media = session.get(MediaItem, media_id)
    if media is None or media.user_id != auth.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")

    refresh_media_status(session, media, provider)
    return GenerationStatusResponse(
        media_id=media.id,
        status=media.status,
        generation_type=media.generation_type,
        media_type=media.media_type,
        title=media.title,
        audio_url=media.audio_url,
        image_url=media.image_url,
        video_url=media.video_url,
        error_message=media.error_message,
    )


@router.post("/{generation_type}", response_model=GenerationAcceptedResponse)
def generate(
    generation_type: str,
    payload: Dict[str, Any] = Body(...),
    auth: AuthContext = Depends(require_rate_limited_user("generation")),
    session: Session = Depends(get_session),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> GenerationAcceptedResponse:
    try:
        media = request_generation(
            session,
            user_id=auth.user_id,
            generation_type=generation_type,
            params=payload,
            provider=provider,
        )
    except GenerationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=sanitize_credit_error(str(exc)),
            headers={"x-credits-needed": str(exc.needed), "x-credits-available": str(exc.available)},
        ) from exc
    except GenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=sanitize_error(exc, context=f"generate_{generation_type}"),
        ) from exc

    return GenerationAcceptedResponse(
        success=True,
        media_id=media.id,
        track_id=media.track_id,
        status=media.status,
        generation_type=media.generation_type,
        credits_cost=media.credits_cost,
        credits_remaining=int(get_balance(session, user_id=auth.user_id) or 0),
    )
