"""Canonical job, media and prediction statuses shared by every handler."""

from __future__ import annotations


JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELLED = "cancelled"

FINAL_JOB_STATUSES = {
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
}

MEDIA_STATUS_GENERATING = "generating"
MEDIA_STATUS_READY = "ready"
MEDIA_STATUS_FAILED = "failed"

PREDICTION_STARTING = "starting"
PREDICTION_PROCESSING = "processing"
PREDICTION_SUCCEEDED = "succeeded"
PREDICTION_FAILED = "failed"
PREDICTION_CANCELED = "canceled"

FINAL_PREDICTION_STATUSES = {
    PREDICTION_SUCCEEDED,
    PREDICTION_FAILED,
    PREDICTION_CANCELED,
}

_PREDICTION_ALIASES = {
    "cancelled": PREDICTION_CANCELED,
    "queued": PREDICTION_STARTING,
    "running": PREDICTION_PROCESSING,
    "completed": PREDICTION_SUCCEEDED,
    "error": PREDICTION_FAILED,
}


def canonicalize_prediction_status(status: str | None) -> str:
    normalized = str(status or "").strip().lower()
    if not normalized:
        return PREDICTION_STARTING
    return _PREDICTION_ALIASES.get(normalized, normalized)


def is_final_prediction_status(status: str | None) -> bool:
    return canonicalize_prediction_status(status) in FINAL_PREDICTION_STATUSES


def job_status_for_prediction(status: str | None) -> str:
    canonical = canonicalize_prediction_status(status)
    if canonical == PREDICTION_SUCCEEDED:
        return JOB_STATUS_COMPLETED
    if canonical == PREDICTION_FAILED:
        return JOB_STATUS_FAILED
    if canonical == PREDICTION_CANCELED:
        return JOB_STATUS_CANCELLED
    return JOB_STATUS_PROCESSING
