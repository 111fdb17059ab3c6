"""DAW plugin routes: token management (web session) and jobs (plugin token)."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from radio444.auth.dependencies import get_optional_auth_context, require_auth_context, require_plugin_auth
from radio444.auth.jwt import AuthContext
from radio444.auth.middleware import extract_bearer_token
from radio444.auth.plugin_tokens import (
    ACCESS_TIER_DENIED_INACTIVE,
    ACCESS_TIER_DENIED_NO_PURCHASE,
    PluginAuthError,
    PluginAuthResult,
    PluginTokenLimitError,
    create_plugin_token,
    find_active_token,
    list_plugin_tokens,
    resolve_access_tier,
    revoke_plugin_token,
)
from radio444.core.errors import sanitize_error
from radio444.credits.ledger import InsufficientCreditsError
from radio444.generation.catalog import GenerationValidationError
from radio444.generation.providers import GenerationProvider, get_generation_provider
from radio444.generation.service import GenerationError, refresh_plugin_job
from radio444.plugin.service import ACCESS_MESSAGES, cancel_plugin_job, get_user_job, job_output, submit_plugin_job
from radio444.schemas.plugin import (
    PluginAccessResponse,
    PluginCancelRequest,
    PluginCancelResponse,
    PluginGenerateResponse,
    PluginJobResponse,
    PluginTokenCreateRequest,
    PluginTokenCreateResponse,
    PluginTokenItem,
    PluginTokenListResponse,
    PluginTokenRevokeResponse,
)
from radio444.storage.db import get_session
from radio444.storage.models import User


router = APIRouter(prefix="/plugin", tags=["plugin"])


@router.get("/token", response_model=PluginTokenListResponse)
def list_tokens(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PluginTokenListResponse:
    return PluginTokenListResponse(
        tokens=[
            PluginTokenItem(
                id=token.id,
                name=token.name,
                token_prefix=token.token_prefix,
                is_active=token.is_active,
                last_used_at=token.last_used_at,
                expires_at=token.expires_at,
                created_at=token.created_at,
            )
            for token in list_plugin_tokens(session, user_id=auth.user_id)
        ]
    )


@router.post("/token", response_model=PluginTokenCreateResponse)
def create_token(
    payload: PluginTokenCreateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PluginTokenCreateResponse:
    if session.get(User, auth.user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    try:
        issued = create_plugin_token(session, user_id=auth.user_id, name=payload.name)
    except PluginTokenLimitError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PluginTokenCreateResponse(
        id=issued.id,
        name=issued.name,
        token=issued.token,
        token_prefix=issued.token_prefix,
        expires_at=issued.expires_at,
        message="Copy this token now. It will not be shown again.",
    )


@router.delete("/token", response_model=PluginTokenRevokeResponse)
def revoke_token(
    token_id: str = Query(alias="id", min_length=1, max_length=36),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PluginTokenRevokeResponse:
    if not revoke_plugin_token(session, user_id=auth.user_id, token_id=token_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")
    return PluginTokenRevokeResponse(success=True, id=token_id)


@router.post("/generate", response_model=PluginGenerateResponse)
def plugin_generate(
    payload: Dict[str, Any] = Body(...),
    plugin: PluginAuthResult = Depends(require_plugin_auth),
    session: Session = Depends(get_session),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> PluginGenerateResponse:
    generation_type = str(payload.get("type") or "")
    try:
        job = submit_plugin_job(
            session,
            user_id=plugin.user_id,
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
            detail=f"Insufficient credits. {generation_type} requires {exc.needed} credits, you have {exc.available}.",
        ) from exc
    except GenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=sanitize_error(exc, context=f"plugin_generate_{generation_type}"),
        ) from exc

    return PluginGenerateResponse(
        success=True,
        job_id=job.id,
        status=job.status,
        generation_type=job.type,
        credits_cost=job.credits_cost,
    )


@router.get("/jobs/{job_id}", response_model=PluginJobResponse)
def plugin_job(
    job_id: str,
    plugin: PluginAuthResult = Depends(require_plugin_auth),
    session: Session = Depends(get_session),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> PluginJobResponse:
    job = get_user_job(session, user_id=plugin.user_id, job_id=job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    refresh_plugin_job(session, job, provider)
    return PluginJobResponse(
        id=job.id,
        type=job.type,
        status=job.status,
        credits_cost=job.credits_cost,
        output=job_output(job),
        error=job.error,
        media_id=job.media_id,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@router.post("/cancel", response_model=PluginCancelResponse)
def plugin_cancel(
    payload: PluginCancelRequest,
    plugin: PluginAuthResult = Depends(require_plugin_auth),
    session: Session = Depends(get_session),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> PluginCancelResponse:
    if not payload.jobId and not payload.predictionId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Must provide jobId or predictionId")

    job, cancelled = cancel_plugin_job(
        session,
        user_id=plugin.user_id,
        provider=provider,
        job_id=payload.jobId,
        prediction_id=payload.predictionId,
    )
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return PluginCancelResponse(success=True, cancelled=cancelled, job_id=job.id, status=job.status)


@router.get("/access", response_model=PluginAccessResponse)
def plugin_access(
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> PluginAccessResponse:
    if auth is not None:
        user_id = auth.user_id
    else:
        try:
            user_id = find_active_token(session, extract_bearer_token(request)).user_id
        except PluginAuthError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    tier = resolve_access_tier(user)
    return PluginAccessResponse(
        access_tier=tier,
        has_access=tier not in {ACCESS_TIER_DENIED_INACTIVE, ACCESS_TIER_DENIED_NO_PURCHASE},
        credits=user.credits,
        subscription_plan=user.subscription_plan,
        subscription_status=user.subscription_status,
        message=ACCESS_MESSAGES[tier],
    )
