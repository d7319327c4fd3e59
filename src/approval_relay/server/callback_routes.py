"""Inbound decision routes: direct callback addresses and the Slack ingress.

Dependencies: approval.ingress, errors, infra.slack, models, runtime
Wired in: server/app.py
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status

from approval_relay.approval.ingress import DeliveryReceipt
from approval_relay.errors import StaleCallbackError, ValidationError
from approval_relay.infra.slack import (
    build_decision_reply,
    build_stale_reply,
    parse_block_action,
    parse_interaction_body,
    verify_signature,
)
from approval_relay.models import Decision
from approval_relay.runtime import get_runtime
from approval_relay.server.models import CallbackAccepted

_log = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/callbacks/{approval_id}/{token}", response_model=CallbackAccepted)
def strike_callback(approval_id: str, token: str, payload: Any = Body(...)) -> CallbackAccepted:
    """Deliver ``{approved, response}`` to the task awaiting *approval_id*."""
    decision = Decision.from_payload(payload)
    receipt = get_runtime().ingress.deliver(approval_id, decision, token=token)
    if not receipt.delivered:
        raise StaleCallbackError(f"No pending approval for {approval_id}")
    return CallbackAccepted(approval_id=approval_id, status=str(receipt.status))


# --- Slack ---


@router.get("/api/slack/webhook")
def slack_webhook_health() -> dict[str, str]:
    """Health check for the Slack request URL."""
    return {"status": "ok", "message": "Slack webhook endpoint is active"}


def _url_verification(body: bytes, content_type: str) -> dict[str, Any] | None:
    if "application/json" not in content_type:
        return None
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Slack body is not valid JSON: {exc}") from exc
    if isinstance(data, dict) and data.get("type") == "url_verification":
        return {"challenge": data.get("challenge")}
    raise ValidationError("Unsupported JSON body on Slack webhook.")


def _deliver_slack_action(body: str) -> dict[str, Any]:
    action = parse_block_action(parse_interaction_body(body))
    decision = Decision(approved=action.approved, response=action.response)
    receipt: DeliveryReceipt = get_runtime().ingress.deliver(action.approval_id, decision)
    if not receipt.delivered:
        return build_stale_reply()
    _log.info(
        "Slack user %s %s approval %s",
        action.user_id,
        "approved" if action.approved else "denied",
        action.approval_id,
    )
    return build_decision_reply(action.approved, action.user_id)


@router.post("/api/slack/webhook")
async def slack_webhook(request: Request) -> dict[str, Any]:
    """Handle Slack interactive button clicks on approval messages."""
    body = await request.body()
    challenge = _url_verification(body, request.headers.get("content-type", ""))
    if challenge is not None:
        return challenge

    signing_secret = get_runtime().config.slack_signing_secret
    if signing_secret is not None and not verify_signature(signing_secret, body, request.headers):
        _log.warning("Rejected Slack request with invalid signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Slack signature")

    # Store and DBOS calls block; keep them off the event loop.
    return await asyncio.to_thread(_deliver_slack_action, body.decode("utf-8"))
