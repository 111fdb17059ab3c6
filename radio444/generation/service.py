"""Credit-gated generation requests and prediction result handling."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from radio444.core.config import get_settings
from radio444.core.logger import get_logger
from radio444.core.metrics import record_credits_spent, record_generation_request
from radio444.credits.ledger import (
    InsufficientCreditsError,
    deduct_credits,
    generation_transaction_type,
    get_balance,
    log_transaction,
    refund_credits,
)
from radio444.generation.catalog import (
    MEDIA_AUDIO,
    MEDIA_IMAGE,
    MEDIA_VIDEO,
    GenerationSpec,
    get_generation_spec,
    resolve_model,
    title_for,
)
from radio444.generation.providers import GenerationProvider, Prediction, ProviderError
from radio444.generation.states import (
    FINAL_JOB_STATUSES,
    JOB_STATUS_CANCELLED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    MEDIA_STATUS_FAILED,
    MEDIA_STATUS_GENERATING,
    MEDIA_STATUS_READY,
    PREDICTION_CANCELED,
    PREDICTION_SUCCEEDED,
    canonicalize_prediction_status,
    is_final_prediction_status,
    job_status_for_prediction,
)
from radio444.media.track_ids import generate_track_id
from radio444.realtime.relay import (
    EVENT_JOB_COMPLETED,
    EVENT_JOB_FAILED,
    EVENT_JOB_PROGRESS,
    publish,
    user_channel,
)
from radio444.storage.models import MediaItem, PluginJob
from radio444.storage.objects import ObjectStorageError, build_object_key, get_object_storage, guess_extension


logger = get_logger("radio444.generation")

_DEFAULT_EXTENSIONS = {
    MEDIA_AUDIO: ".mp3",
    MEDIA_IMAGE: ".jpg",
    MEDIA_VIDEO: ".mp4",
}


class GenerationError(Exception):
    """Raised when the provider cannot accept a generation request."""


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def webhook_url() -> Optional[str]:
    settings = get_settings()
    base = settings.app_public_base_url.strip().rstrip("/")
    if not base or not settings.generation_webhook_token:
        return None
    return f"{base}/generate/webhook?token={settings.generation_webhook_token}"


def extract_output_urls(output: Any) -> List[str]:
    """Flatten a provider output (URL, list of URLs or mapping of URLs) into a list."""

    if isinstance(output, str):
        return [output] if output.startswith(("http://", "https://")) else []
    if isinstance(output, list):
        urls: List[str] = []
        for item in output:
            urls.extend(extract_output_urls(item))
        return urls
    if isinstance(output, dict):
        urls = []
        for key in sorted(output):
            urls.extend(extract_output_urls(output[key]))
        return urls
    return []


def submit_prediction(provider: GenerationProvider, spec: GenerationSpec, params: Dict[str, Any]) -> Prediction:
    model, version = resolve_model(spec, params)
    return provider.create_prediction(
        model=model,
        version=version,
        input=spec.build_input(params),
        webhook_url=webhook_url(),
    )


def request_generation(
    session: Session,
    *,
    user_id: str,
    generation_type: str,
    params: Dict[str, Any],
    provider: GenerationProvider,
) -> MediaItem:
    """Charge the user, create a ``generating`` item and submit the prediction.

    Raises ``GenerationValidationError`` for bad payloads, ``LookupError`` for
    unknown users, ``InsufficientCreditsError`` when the balance is below the
    cost and ``GenerationError`` when the provider rejects the submission (the
    charge is refunded in that case).
    """

    spec = get_generation_spec(generation_type)
    spec.build_input(params)
    cost = spec.cost(params)

    balance = get_balance(session, user_id=user_id)
    if balance is None:
        raise LookupError("User not found")
    if balance < cost:
        record_generation_request(generation_type=spec.type, outcome="insufficient_credits")
        raise InsufficientCreditsError(needed=cost, available=balance)

    media = MediaItem(
        user_id=user_id,
        track_id=generate_track_id(user_id) if spec.media_type == MEDIA_AUDIO else None,
        title=title_for(spec, params),
        prompt=(params.get("prompt") or None) if isinstance(params.get("prompt"), str) else None,
        genre=(params.get("genre") or None) if isinstance(params.get("genre"), str) else None,
        generation_type=spec.type,
        media_type=spec.media_type,
        status=MEDIA_STATUS_GENERATING,
        provider=provider.provider_name,
        credits_cost=cost,
    )
    session.add(media)
    session.flush()

    deduction = deduct_credits(session, user_id=user_id, amount=cost)
    if not deduction.success:
        session.rollback()
        record_generation_request(generation_type=spec.type, outcome="insufficient_credits")
        raise InsufficientCreditsError(needed=cost, available=deduction.new_credits)

    log_transaction(
        session,
        user_id=user_id,
        amount=-cost,
        transaction_type=generation_transaction_type(spec.type),
        balance_after=deduction.new_credits,
        description=f"{spec.type} generation: {media.title}",
        metadata={"media_id": media.id, "generation_type": spec.type},
    )
    session.commit()
    record_credits_spent(generation_type=spec.type, amount=cost)

    try:
        prediction = submit_prediction(provider, spec, params)
    except ProviderError as exc:
        logger.error("generation_submit_failed", media_id=media.id, generation_type=spec.type, error=str(exc))
        media.status = MEDIA_STATUS_FAILED
        media.error_message = "Generation provider rejected the request"
        media.updated_at = _now_utc()
        refund_credits(
            session,
            user_id=user_id,
            amount=cost,
            reason=f"Refund: {spec.type} generation could not start",
            metadata={"media_id": media.id},
        )
        session.commit()
        record_generation_request(generation_type=spec.type, outcome="provider_error")
        raise GenerationError("Generation provider rejected the request") from exc

    media.prediction_id = prediction.id
    media.updated_at = _now_utc()
    session.commit()
    record_generation_request(generation_type=spec.type, outcome="submitted")
    logger.info(
        "generation_submitted",
        media_id=media.id,
        generation_type=spec.type,
        prediction_id=prediction.id,
        credits_cost=cost,
    )

    if is_final_prediction_status(prediction.status):
        apply_prediction(session, prediction)
    return media


def _store_artifact(*, user_id: str, media_type: str, name: str, url: str) -> tuple[str, Optional[str]]:
    storage = get_object_storage()
    if storage is None:
        return url, None

    extension = guess_extension(url, _DEFAULT_EXTENSIONS.get(media_type, ".bin"))
    key = build_object_key(user_id=user_id, kind=media_type, name=f"{name}{extension}")
    try:
        stored = storage.copy_from_url(url=url, key=key)
    except ObjectStorageError as exc:
        logger.warning("artifact_copy_failed", key=key, error=str(exc))
        return url, None
    return stored.public_url, stored.key


_URL_COLUMNS = {
    MEDIA_IMAGE: "image_url",
    MEDIA_VIDEO: "video_url",
}


def _url_column(media_type: str) -> str:
    return _URL_COLUMNS.get(media_type, "audio_url")


def _assign_url(media: MediaItem, url: str) -> None:
    setattr(media, _url_column(media.media_type), url)


def _notify(user_id: str, event: str, payload: Dict[str, Any]) -> None:
    publish(user_channel(user_id), event, payload)


def _finalize_media(session: Session, media: MediaItem, **values: Any) -> bool:
    """Move a generating item to a terminal state; False when another writer got there first.

    Runs as a single conditional ``UPDATE`` so a poll and a webhook racing on
    the same prediction cannot both refund or both complete it.
    """

    result = session.execute(
        update(MediaItem)
        .where(MediaItem.id == media.id, MediaItem.status == MEDIA_STATUS_GENERATING)
        .values(updated_at=_now_utc(), **values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        session.rollback()
        session.refresh(media)
        return False
    return True


def finalize_plugin_job(session: Session, job: PluginJob, **values: Any) -> bool:
    """Conditional terminal transition for plugin jobs; see ``_finalize_media``."""

    now = _now_utc()
    values.setdefault("completed_at", now)
    result = session.execute(
        update(PluginJob)
        .where(PluginJob.id == job.id, PluginJob.status.not_in(FINAL_JOB_STATUSES))
        .values(updated_at=now, **values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        session.rollback()
        session.refresh(job)
        return False
    return True


def _apply_to_media(session: Session, media: MediaItem, prediction: Prediction) -> None:
    if media.status != MEDIA_STATUS_GENERATING:
        return

    status = canonicalize_prediction_status(prediction.status)
    if not is_final_prediction_status(status):
        _notify(media.user_id, EVENT_JOB_PROGRESS, {"mediaId": media.id, "status": status})
        return

    urls = extract_output_urls(prediction.output) if status == PREDICTION_SUCCEEDED else []
    if urls:
        public_url, storage_key = _store_artifact(
            user_id=media.user_id,
            media_type=media.media_type,
            name=media.id,
            url=urls[0],
        )
        claimed = _finalize_media(
            session,
            media,
            status=MEDIA_STATUS_READY,
            storage_key=storage_key,
            output_json=_json_dumps(prediction.output),
            **{_url_column(media.media_type): public_url},
        )
        if not claimed:
            logger.info("generation_already_final", media_id=media.id, status=media.status)
            return
        session.commit()
        logger.info("generation_completed", media_id=media.id, prediction_id=prediction.id)
        _notify(
            media.user_id,
            EVENT_JOB_COMPLETED,
            {"mediaId": media.id, "type": media.generation_type, "url": public_url, "title": media.title},
        )
        return

    if status == PREDICTION_SUCCEEDED:
        reason = "No output URL from model"
    elif status == PREDICTION_CANCELED:
        reason = "Generation cancelled"
    else:
        reason = "Generation failed"
    if not _finalize_media(session, media, status=MEDIA_STATUS_FAILED, error_message=reason):
        logger.info("generation_already_final", media_id=media.id, status=media.status)
        return
    refund_credits(
        session,
        user_id=media.user_id,
        amount=media.credits_cost,
        reason=f"Refund: {media.generation_type} generation failed",
        metadata={"media_id": media.id, "prediction_id": prediction.id},
    )
    session.commit()
    logger.warning(
        "generation_failed",
        media_id=media.id,
        prediction_id=prediction.id,
        provider_error=prediction.error,
    )
    _notify(media.user_id, EVENT_JOB_FAILED, {"mediaId": media.id, "error": reason})


def _apply_to_plugin_job(session: Session, job: PluginJob, prediction: Prediction) -> None:
    if job.status in FINAL_JOB_STATUSES:
        return

    job_status = job_status_for_prediction(prediction.status)
    if job_status not in FINAL_JOB_STATUSES:
        result = session.execute(
            update(PluginJob)
            .where(PluginJob.id == job.id, PluginJob.status.not_in(FINAL_JOB_STATUSES))
            .values(status=job_status, updated_at=_now_utc())
            .execution_options(synchronize_session="fetch")
        )
        session.commit()
        if result.rowcount == 1:
            _notify(job.user_id, EVENT_JOB_PROGRESS, {"jobId": job.id, "status": job_status})
        else:
            session.refresh(job)
        return

    urls = extract_output_urls(prediction.output) if job_status == JOB_STATUS_COMPLETED else []
    if job_status == JOB_STATUS_COMPLETED and urls:
        _complete_plugin_job(session, job, prediction, urls)
        return

    if job_status == JOB_STATUS_CANCELLED:
        final_status, error = JOB_STATUS_CANCELLED, None
    else:
        final_status, error = JOB_STATUS_FAILED, (prediction.error or "No output URL from model")[:255]
    if not finalize_plugin_job(session, job, status=final_status, error=error):
        logger.info("plugin_job_already_final", job_id=job.id, status=job.status)
        return
    session.commit()
    logger.warning("plugin_job_not_completed", job_id=job.id, status=job.status, provider_error=prediction.error)
    _notify(job.user_id, EVENT_JOB_FAILED, {"jobId": job.id, "status": job.status, "error": job.error})


def _complete_plugin_job(session: Session, job: PluginJob, prediction: Prediction, urls: List[str]) -> None:
    spec = get_generation_spec(job.type)
    try:
        params = json.loads(job.params_json or "{}")
    except ValueError:
        params = {}

    public_url, storage_key = _store_artifact(
        user_id=job.user_id,
        media_type=spec.media_type,
        name=job.id,
        url=urls[0],
    )
    claimed = finalize_plugin_job(
        session,
        job,
        status=JOB_STATUS_COMPLETED,
        output_json=_json_dumps({"urls": urls, "url": public_url, "output": prediction.output}),
    )
    if not claimed:
        logger.info("plugin_job_already_final", job_id=job.id, status=job.status)
        return

    deduction = deduct_credits(session, user_id=job.user_id, amount=job.credits_cost)
    if deduction.success:
        log_transaction(
            session,
            user_id=job.user_id,
            amount=-job.credits_cost,
            transaction_type=generation_transaction_type(spec.type),
            balance_after=deduction.new_credits,
            description=f"Plugin {spec.type} generation",
            metadata={"job_id": job.id, "origin": "plugin"},
        )
        record_credits_spent(generation_type=spec.type, amount=job.credits_cost)
    else:
        logger.warning(
            "plugin_credit_deduction_failed",
            job_id=job.id,
            credits_cost=job.credits_cost,
            error=deduction.error_message,
        )

    media = MediaItem(
        user_id=job.user_id,
        track_id=generate_track_id(job.user_id) if spec.media_type == MEDIA_AUDIO else None,
        title=title_for(spec, params),
        prompt=params.get("prompt") if isinstance(params.get("prompt"), str) else None,
        generation_type=spec.type,
        media_type=spec.media_type,
        status=MEDIA_STATUS_READY,
        storage_key=storage_key,
        output_json=_json_dumps(prediction.output),
        provider=prediction.provider,
        credits_cost=job.credits_cost,
        is_public=False,
    )
    _assign_url(media, public_url)
    session.add(media)
    session.flush()

    job.media_id = media.id
    session.commit()
    logger.info("plugin_job_completed", job_id=job.id, media_id=media.id)
    _notify(job.user_id, EVENT_JOB_COMPLETED, {"jobId": job.id, "mediaId": media.id, "url": public_url})


def apply_prediction(session: Session, prediction: Prediction) -> bool:
    """Apply a provider prediction to the media item or plugin job that owns it.

    Returns False when no row references the prediction. Re-applying a
    prediction to an already terminal row is a no-op.
    """

    media = session.scalar(select(MediaItem).where(MediaItem.prediction_id == prediction.id))
    if media is not None:
        _apply_to_media(session, media, prediction)
        return True

    job = session.scalar(select(PluginJob).where(PluginJob.prediction_id == prediction.id))
    if job is not None:
        _apply_to_plugin_job(session, job, prediction)
        return True

    logger.info("prediction_unmatched", prediction_id=prediction.id)
    return False


def refresh_media_status(session: Session, media: MediaItem, provider: GenerationProvider) -> MediaItem:
    if media.status != MEDIA_STATUS_GENERATING or not media.prediction_id:
        return media
    try:
        prediction = provider.get_prediction(media.prediction_id)
    except ProviderError as exc:
        logger.warning("prediction_refresh_failed", media_id=media.id, error=str(exc))
        return media
    _apply_to_media(session, media, prediction)
    return media


def refresh_plugin_job(session: Session, job: PluginJob, provider: GenerationProvider) -> PluginJob:
    if job.status in FINAL_JOB_STATUSES or not job.prediction_id:
        return job
    try:
        prediction = provider.get_prediction(job.prediction_id)
    except ProviderError as exc:
        logger.warning("prediction_refresh_failed", job_id=job.id, error=str(exc))
        return job
    _apply_to_plugin_job(session, job, prediction)
    return job
