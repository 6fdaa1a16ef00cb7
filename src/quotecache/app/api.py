"""FastAPI application exposing cached per-day lookups.

Run with:
    uvicorn quotecache.app.api:app --reload
or:
    python -m quotecache.app.api

Environment variables prefixed with ``QC_`` (e.g. ``QC_STORE_BACKEND``)
can override default configuration values.
"""

from __future__ import annotations

import asyncio
import secrets
from typing import Any, cast

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from redis.exceptions import ConnectionError as RedisConnectionError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from quotecache.config.settings import Settings, get_settings
from quotecache.coordination.coordinator import NO_DATA
from quotecache.errors import ErrorCode, QCError, wrap_error
from quotecache.logging import get_logger, log_exception
from quotecache.lookup import CoordinatorRegistry, flush_cache, get_registry, get_value, refresh_all
from quotecache.pipeline.cache_refresh import schedule_cache_refresh
from quotecache.security.validation import sanitize_value_date

settings = get_settings()

logger = get_logger(__name__, component="rest_api")


_STATUS_BY_CODE = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.NOT_YET_AVAILABLE: 404,
    ErrorCode.DATA_SOURCE: 502,
    ErrorCode.LOCK: 503,
    ErrorCode.UNAVAILABLE: 503,
    ErrorCode.CACHE: 503,
    ErrorCode.CONFIG: 500,
}


def _handle_error(error: QCError, *, event: str, endpoint: str) -> None:
    """Log ``error`` and raise an HTTP response."""

    log_exception(logger, error, event=event, context={"endpoint": endpoint})
    status_code = _STATUS_BY_CODE.get(error.code, 500)
    raise HTTPException(status_code=status_code, detail=error.user_message)


def get_api_settings() -> Settings:
    return settings


def _registry() -> CoordinatorRegistry:
    registry = getattr(app.state, "registry", None)
    return registry if registry is not None else get_registry()


def require_api_key(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_api_settings),
) -> None:
    """Reject mutating calls without ``Authorization: Bearer <key>`` when a key is set."""

    expected = settings.api_key
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


class SecureHeadersMiddleware(BaseHTTPMiddleware):
    """Attach standard security headers to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "same-origin")
        return response


app = FastAPI(title="quotecache API")
app.add_middleware(SecureHeadersMiddleware)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app.state.limiter = limiter


def _rate_limit_handler(request: Request, exc: Exception) -> Response:
    """Forward SlowAPI rate-limit exceptions to its default handler."""

    return _rate_limit_exceeded_handler(request, cast(RateLimitExceeded, exc))


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)


@app.on_event("startup")
async def on_startup() -> None:
    """Build the shared store and schedule the daily refresh."""

    registry = get_registry()
    app.state.registry = registry
    app.state.store_last_error = None
    store_ok, report = await _check_store_health()
    app.state.store_health = "healthy" if store_ok else "degraded"
    if not store_ok:
        logger.warning("Store backend unreachable at startup: %s", report.get("last_error"))
    app.state.cache_refresh_task = asyncio.create_task(
        schedule_cache_refresh(registry.coordinators(), delay=settings.cache_refresh_interval)
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    task = getattr(app.state, "cache_refresh_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # pragma: no cover - defensive logging
            logger.warning("Cache refresh task raised during shutdown", exc_info=exc)
    registry = getattr(app.state, "registry", None)
    if registry is not None:
        try:
            await registry.close()
        except Exception as exc:  # pragma: no cover - best-effort cleanup
            logger.warning("Store close failed during shutdown", exc_info=exc)
    app.state.registry = None
    app.state.store_health = "stopped"


async def _check_store_health() -> tuple[bool, dict[str, Any]]:
    """Probe the shared store and return structured status."""

    registry = getattr(app.state, "registry", None)
    if registry is None:
        return False, {"status": "down", "detail": "store_unavailable", "backend": settings.store_backend}
    store = registry.store
    try:
        ping = getattr(store, "ping", None)
        if ping is not None:
            await ping()
        else:
            await store.get("healthz")
    except (RedisConnectionError, OSError, TimeoutError, QCError) as exc:
        app.state.store_last_error = str(exc)
        return False, {
            "status": "down",
            "detail": "store_unreachable",
            "backend": settings.store_backend,
            "last_error": str(exc),
        }
    app.state.store_last_error = None
    return True, {"status": "up", "detail": None, "backend": settings.store_backend}


def _check_cache_refresh_task() -> tuple[bool, dict[str, Any]]:
    """Return health information for the cache refresh background task."""

    task = getattr(app.state, "cache_refresh_task", None)
    if task is None:
        return False, {"status": "missing", "detail": "cache_refresh_task_missing"}
    if task.cancelled():
        return False, {"status": "cancelled", "detail": "cache_refresh_task_cancelled"}
    if task.done():
        exc = task.exception()
        if exc is not None:
            return False, {
                "status": "error",
                "detail": f"cache_refresh_task_failed:{exc.__class__.__name__}",
            }
        return True, {"status": "completed", "detail": None}
    return True, {"status": "running", "detail": None}


@app.get("/healthz", tags=["operations"], response_class=JSONResponse)
async def healthz() -> JSONResponse:
    """Liveness endpoint reporting process and background worker health."""

    _, store_report = await _check_store_health()
    task_ok, task_report = _check_cache_refresh_task()
    store_state = getattr(app.state, "store_health", "unknown")
    overall_ok = task_ok and store_state != "stopped"
    status_code = status.HTTP_200_OK if overall_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    body = {
        "status": "ok" if overall_ok else "error",
        "store": store_report | {"state": store_state},
        "cache_refresh_task": task_report,
    }
    return JSONResponse(status_code=status_code, content=body)


@app.get("/readyz", tags=["operations"], response_class=JSONResponse)
async def readyz() -> JSONResponse:
    """Readiness endpoint ensuring the store is reachable."""

    store_ok, store_report = await _check_store_health()
    task_ok, task_report = _check_cache_refresh_task()
    overall_ok = store_ok and task_ok
    status_code = status.HTTP_200_OK if overall_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    body = {
        "status": "ok" if overall_ok else "error",
        "store": store_report,
        "cache_refresh_task": task_report,
    }
    return JSONResponse(status_code=status_code, content=body)


@app.get("/sources")
def sources_endpoint() -> dict[str, Any]:
    """List the configured sources."""

    registry = _registry()
    return {
        "sources": [
            {
                "source": cfg.source_id,
                "kind": cfg.kind,
                "instrumented": cfg.instrumented,
                "timezone": cfg.timezone,
                "admission_policy": cfg.admission_policy.value,
            }
            for cfg in sorted(registry.sources.values(), key=lambda c: c.source_id)
        ]
    }


@app.get("/value")
async def value_endpoint(source: str, date: str, instrument: str | None = None) -> dict[str, Any]:
    """Return the value ``source`` published for ``date`` (``null`` for no data)."""

    try:
        requested = sanitize_value_date(date)
        value = await get_value(source, requested, instrument=instrument, registry=_registry())
    except QCError as error:
        _handle_error(error, event="value_failure", endpoint="value")
    except Exception as exc:
        error = wrap_error(
            exc,
            message="Lookup failed",
            context={"source": source, "date": date},
        )
        _handle_error(error, event="value_failure", endpoint="value")
    payload: dict[str, Any] = {
        "source": source,
        "date": requested.isoformat(),
        "value": None if value is NO_DATA else value,
    }
    if instrument:
        payload["instrument"] = instrument.strip().upper()
    return payload


@app.post("/flush/{source}", dependencies=[Depends(require_api_key)])
async def flush_endpoint(source: str) -> dict[str, Any]:
    """Drop every cached partition of ``source``."""

    try:
        removed = await flush_cache(source, registry=_registry())
    except QCError as error:
        _handle_error(error, event="flush_failure", endpoint="flush")
    return {"source": source, "removed": removed}


@app.post("/refresh/{source}", dependencies=[Depends(require_api_key)])
async def refresh_endpoint(source: str) -> dict[str, Any]:
    """Run one full refresh pass for ``source``."""

    try:
        report = await refresh_all(source, registry=_registry())
    except QCError as error:
        _handle_error(error, event="refresh_failure", endpoint="refresh")
    return report.to_dict()


def main() -> None:
    """Run a development server using :mod:`uvicorn`.

    This mirrors running ``uvicorn quotecache.app.api:app``.
    """

    import uvicorn

    uvicorn.run("quotecache.app.api:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
