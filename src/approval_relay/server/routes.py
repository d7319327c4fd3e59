"""Route handlers for the consumer-facing API: sessions, approvals, debug views."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from approval_relay.approval.polling import poll_session
from approval_relay.identity import generate_session_id, require_session_id, resolve_session_id
from approval_relay.runtime import get_runtime
from approval_relay.server.auth import verify_api_key
from approval_relay.server.models import (
    ApprovalRequestBody,
    ApprovalRequestResponse,
    HealthResponse,
    SessionCreated,
    WebhookListing,
    WebhooksDeleted,
)

_log = logging.getLogger(__name__)

router = APIRouter()


# --- Health ---


@router.get("/api/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse()


# --- Sessions ---


@router.post(
    "/api/sessions",
    response_model=SessionCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_api_key)],
)
def create_session() -> SessionCreated:
    """Mint a fresh session id."""
    return SessionCreated(session_id=generate_session_id())


# --- Approvals ---


@router.post(
    "/api/approvals",
    response_model=ApprovalRequestResponse,
    dependencies=[Depends(verify_api_key)],
)
def request_approval(body: ApprovalRequestBody) -> ApprovalRequestResponse:
    """Issue an approval request; an absent or invalid session id gets a fresh one."""
    session_id, created = resolve_session_id(body.session_id)
    if created:
        _log.info("Minted session %s for approval request", session_id)
    outcome = get_runtime().orchestrator.request(session_id, body.to_request(), mode=body.mode)
    return ApprovalRequestResponse(
        approval_id=outcome.approval_id,
        session_id=outcome.session_id,
        session_created=created,
        approved=outcome.approved,
        response=outcome.response,
        pending=outcome.pending,
    )


@router.get("/api/approvals", dependencies=[Depends(verify_api_key)])
def list_approvals(session_id: str | None = Query(default=None, alias="sessionId")) -> dict[str, Any]:
    """Poll every stored result for a session."""
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId query parameter is required")
    require_session_id(session_id)
    return {"success": True, **poll_session(get_runtime().results, session_id)}


@router.get("/api/approvals/{approval_id}", dependencies=[Depends(verify_api_key)])
def get_approval(
    approval_id: str,
    session_id: str | None = Query(default=None, alias="sessionId"),
) -> dict[str, Any]:
    """Return one stored result for a session."""
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId query parameter is required")
    result = get_runtime().results.for_approval(session_id, approval_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Approval result not found")
    return {"success": True, "result": result.to_wire()}


# --- Debug ---


@router.get(
    "/api/debug/webhooks",
    response_model=WebhookListing,
    dependencies=[Depends(verify_api_key)],
)
def list_webhooks() -> WebhookListing:
    """List live callback addresses."""
    webhooks = get_runtime().webhooks
    live = webhooks.list_live()
    return WebhookListing(
        storage_dir=str(webhooks.store.root),
        count=len(live),
        webhooks=[record.to_wire() for record in live],
    )


@router.delete(
    "/api/debug/webhooks",
    response_model=WebhooksDeleted,
    dependencies=[Depends(verify_api_key)],
)
def delete_webhooks(approval_id: str | None = Query(default=None, alias="id")) -> WebhooksDeleted:
    """Delete one callback address by id, or all of them."""
    webhooks = get_runtime().webhooks
    if approval_id is None:
        deleted = webhooks.clear()
        _log.warning("Cleared %d callback address(es) via debug endpoint", deleted)
        return WebhooksDeleted(deleted=deleted)
    if not webhooks.consume(approval_id):
        raise HTTPException(status_code=404, detail="Webhook not found")
    return WebhooksDeleted(deleted=1)
