"""Plugin job lifecycle: submit, poll and cancel."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from radio444.auth.plugin_tokens import (
    ACCESS_TIER_DENIED_INACTIVE,
    ACCESS_TIER_DENIED_NO_PURCHASE,
    ACCESS_TIER_PRO,
    ACCESS_TIER_PURCHASED,
    ACCESS_TIER_STUDIO,
)
from radio444.core.logger import get_logger
from radio444.core.metrics import record_generation_request
from radio444.credits.ledger import InsufficientCreditsError, get_balance
from radio444.generation.catalog import get_generation_spec
from radio444.generation.providers import GenerationProvider, ProviderError
from radio444.generation.service import GenerationError, apply_prediction, finalize_plugin_job, submit_prediction
from radio444.generation.states import (
    FINAL_JOB_STATUSES,
    JOB_STATUS_CANCELLED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    is_final_prediction_status,
)
from radio444.storage.models import PluginJob


logger = get_logger("radio444.plugin")

ACCESS_MESSAGES = {
    ACCESS_TIER_STUDIO: "Unlimited plugin access (Studio plan)",
    ACCESS_TIER_PRO: "Plugin access included with Pro",
    ACCESS_TIER_PURCHASED: "Plugin access unlocked (one-time purchase)",
    ACCESS_TIER_DENIED_INACTIVE: "Subscription inactive. Resubscribe for plugin access.",
    ACCESS_TIER_DENIED_NO_PURCHASE: "Purchase the plugin or subscribe to Pro/Studio for access.",
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def submit_plugin_job(
    session: Session,
    *,
    user_id: str,
    generation_type: str,
    params: Dict[str, Any],
    provider: GenerationProvider,
) -> PluginJob:
    """Validate, check credits and start a job; credits are charged on completion."""

    spec = get_generation_spec(generation_type)
    spec.build_input(params)
    cost = spec.cost(params)

    credits = get_balance(session, user_id=user_id)
    if credits is None:
        raise LookupError("User not found")
    if credits < cost:
        record_generation_request(generation_type=spec.type, outcome="insufficient_credits")
        raise InsufficientCreditsError(needed=cost, available=credits)

    job = PluginJob(
        user_id=user_id,
        type=spec.type,
        status=JOB_STATUS_PENDING,
        credits_cost=cost,
        params_json=json.dumps(params, separators=(",", ":"), sort_keys=True, default=str),
    )
    session.add(job)
    session.commit()

    try:
        prediction = submit_prediction(provider, spec, params)
    except ProviderError as exc:
        logger.error("plugin_submit_failed", job_id=job.id, generation_type=spec.type, error=str(exc))
        job.status = JOB_STATUS_FAILED
        job.error = "Generation provider rejected the request"
        job.completed_at = _now_utc()
        session.commit()
        record_generation_request(generation_type=spec.type, outcome="provider_error")
        raise GenerationError("Generation provider rejected the request") from exc

    job.status = JOB_STATUS_PROCESSING
    job.prediction_id = prediction.id
    job.updated_at = _now_utc()
    session.commit()
    record_generation_request(generation_type=spec.type, outcome="submitted")
    logger.info("plugin_job_submitted", job_id=job.id, generation_type=spec.type, prediction_id=prediction.id)

    if is_final_prediction_status(prediction.status):
        apply_prediction(session, prediction)
    return job


def get_user_job(session: Session, *, user_id: str, job_id: str) -> Optional[PluginJob]:
    return session.scalar(select(PluginJob).where(PluginJob.id == job_id, PluginJob.user_id == user_id))


def cancel_plugin_job(
    session: Session,
    *,
    user_id: str,
    provider: GenerationProvider,
    job_id: Optional[str] = None,
    prediction_id: Optional[str] = None,
) -> tuple[Optional[PluginJob], bool]:
    """Best-effort cancel. Returns ``(job, cancelled)``; terminal jobs are left untouched."""

    statement = select(PluginJob).where(PluginJob.user_id == user_id)
    if job_id:
        statement = statement.where(PluginJob.id == job_id)
    else:
        statement = statement.where(PluginJob.prediction_id == prediction_id)
    job = session.scalar(statement)
    if job is None:
        return None, False
    if job.status in FINAL_JOB_STATUSES:
        return job, False

    if job.prediction_id:
        try:
            provider.cancel_prediction(job.prediction_id)
        except ProviderError as exc:
            logger.warning("plugin_cancel_provider_failed", job_id=job.id, error=str(exc))

    if not finalize_plugin_job(session, job, status=JOB_STATUS_CANCELLED, error="Cancelled by user"):
        return job, False
    session.commit()
    logger.info("plugin_job_cancelled", job_id=job.id)
    return job, True


def job_output(job: PluginJob) -> Optional[Dict[str, Any]]:
    if not job.output_json:
        return None
    try:
        parsed = json.loads(job.output_json)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
