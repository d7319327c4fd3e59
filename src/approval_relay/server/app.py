"""FastAPI application setup, error mapping, and the periodic store sweep."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from approval_relay.errors import (
    ApprovalRelayError,
    SendError,
    StaleCallbackError,
    StorageError,
    ValidationError,
)
from approval_relay.runtime import Runtime, get_runtime
from approval_relay.server.callback_routes import router as callback_router
from approval_relay.server.routes import router

_log = logging.getLogger(__name__)

_sweep_task: asyncio.Task[None] | None = None  # set during lifespan

# First match wins; DuplicateApprovalError falls under StorageError.
_STATUS_BY_ERROR: tuple[tuple[type[ApprovalRelayError], int], ...] = (
    (ValidationError, 422),
    (StaleCallbackError, 404),
    (SendError, 502),
    (StorageError, 503),
)


def status_for_error(error: ApprovalRelayError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 500


async def _relay_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ApprovalRelayError)
    status_code = status_for_error(exc)
    if status_code >= 500:
        _log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": exc.code, "message": str(exc)}},
    )


def _sweep_once(runtime: Runtime) -> None:
    reports = runtime.sweep()
    evicted = sum(report.evicted for report in reports.values())
    if evicted:
        _log.info("Swept %d expired record(s)", evicted)


async def _sweep_expired_records(runtime: Runtime) -> None:
    """Evict expired webhook and result records at startup and then periodically."""
    interval = runtime.config.sweep_interval_seconds
    while True:
        try:
            await asyncio.to_thread(_sweep_once, runtime)
        except Exception:
            _log.exception("Error during store sweep")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: startup/shutdown hooks."""
    global _sweep_task
    _log.info("Approval relay server starting")
    try:
        runtime = get_runtime()
    except RuntimeError:
        _log.warning("Runtime not initialised; periodic store sweep disabled")
        runtime = None
    if runtime is not None:
        _sweep_task = asyncio.create_task(_sweep_expired_records(runtime))
    yield
    _log.info("Approval relay server shutting down")
    if _sweep_task is not None:
        _sweep_task.cancel()
        _sweep_task = None


app = FastAPI(
    title="Approval Relay",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(ApprovalRelayError, _relay_error_handler)
app.include_router(router)
app.include_router(callback_router)
