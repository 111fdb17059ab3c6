"""FastAPI application entrypoint for the radio444 backend."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from radio444.auth.middleware import AUTH_CONTEXT_KEY, resolve_request_auth_context
from radio444.billing.webhooks import router as billing_router
from radio444.chat.router import router as chat_router
from radio444.core.config import get_settings
from radio444.core.errors import unhandled_exception_handler
from radio444.core.logger import bind_request_context, clear_request_context, get_logger
from radio444.core.metrics import record_http_request, record_rate_limit_block, render_prometheus_metrics
from radio444.core.observability import init_sentry, sentry_scope
from radio444.core.rate_limit import RateLimitDecision, get_ip_rate_limiter, rate_limit_headers
from radio444.credits.router import router as credits_router
from radio444.earn.router import router as earn_router
from radio444.generation.router import router as generation_router
from radio444.media.router import router as media_router
from radio444.plugin.router import router as plugin_router
from radio444.realtime.relay import get_relay
from radio444.realtime.router import router as realtime_router
from radio444.stations.router import router as stations_router
from radio444.storage.db import create_local_schema, load_models
from radio444.storage.db import test_connection as test_db_connection
from radio444.storage.objects import get_object_storage
from radio444.storage.redis_client import test_connection as test_redis_connection
from radio444.users.router import router as users_router


settings = get_settings()
logger = get_logger("radio444.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_exception_handler(Exception, unhandled_exception_handler)


def _resolve_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def _apply_rate_limit_headers(response: Response, decision: RateLimitDecision) -> None:
    for name, value in rate_limit_headers(decision).items():
        if name != "retry-after" or not decision.allowed:
            response.headers[name] = value


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    auth_context = resolve_request_auth_context(request)
    setattr(request.state, AUTH_CONTEXT_KEY, auth_context)

    user_id = auth_context.user_id if auth_context is not None else None
    bind_request_context(request_id=request_id, user_id=user_id)

    response = None
    decision = None
    status_code = 500

    try:
        with sentry_scope(user_id=user_id, request_id=request_id):
            if settings.ip_rate_limit_enabled and settings.is_production:
                decision = get_ip_rate_limiter().check(identifier=_resolve_client_ip(request))
                if not decision.allowed:
                    record_rate_limit_block(kind="ip")
                    response = JSONResponse(
                        status_code=429,
                        content={
                            "detail": "Rate limit exceeded",
                            "limit": decision.limit,
                            "remaining": decision.remaining,
                            "reset_seconds": decision.reset_seconds,
                        },
                    )
                else:
                    response = await call_next(request)
            else:
                response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        duration = perf_counter() - started_at
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=_route_path(request),
                status_code=status_code,
                duration_seconds=duration,
            )
        clear_request_context()

    if decision is not None:
        _apply_rate_limit_headers(response, decision)
    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    local_schema_created = create_local_schema()
    sentry_enabled = init_sentry()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
        ip_rate_limit_enabled=settings.ip_rate_limit_enabled,
        generation_provider=settings.generation_provider,
        local_schema_created=local_schema_created,
        object_storage_enabled=get_object_storage() is not None,
        relay_enabled=get_relay() is not None,
    )
    if not settings.audio_signing_secret:
        logger.warning("audio_signing_disabled")


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    redis_ok, redis_error = test_redis_connection()

    healthy = db_ok and redis_ok
    status = "ok" if healthy else "degraded"

    payload = {
        "status": status,
        "env": settings.env,
        "services": {
            "database": {"ok": db_ok, "error": db_error},
            "redis": {"ok": redis_ok, "error": redis_error},
        },
    }

    return JSONResponse(content=payload, status_code=200 if healthy else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(users_router)
app.include_router(credits_router)
app.include_router(earn_router)
app.include_router(media_router)
app.include_router(generation_router)
app.include_router(plugin_router)
app.include_router(chat_router)
app.include_router(stations_router)
app.include_router(realtime_router)
app.include_router(billing_router)
