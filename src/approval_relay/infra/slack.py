"""Slack notification sink and interaction payload parsing.

Outbound: an approval request becomes a Block Kit message whose actions block
carries the approval id (``block_id``) and the callback address (button
``value``).  Inbound: a ``block_actions`` interaction is parsed back into the
approval id, the reviewer's choice, and an optional free-text note.

Requires:
  SLACK_BOT_TOKEN            Bot User OAuth Token (xoxb-...)
  SLACK_APPROVAL_CHANNEL_ID  channel that receives approval requests
  SLACK_SIGNING_SECRET       optional; enables request signature checks

Dependencies: errors, models
Wired in: cli.py → build_sink(), server/callback_routes.py
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import parse_qs

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.signature import SignatureVerifier

from approval_relay.errors import SendError, ValidationError
from approval_relay.models import ApprovalRequest

_log = logging.getLogger(__name__)

APPROVE_PREFIX = "approve_"
DENY_PREFIX = "deny_"
NOTE_BLOCK_PREFIX = "note_"
NOTE_ACTION_ID = "note"
_HEADER_TEXT = "🔔 Approval Request"


def build_approval_blocks(
    request: ApprovalRequest,
    approval_id: str,
    callback_address: str,
) -> list[dict[str, Any]]:
    """Block Kit layout for one approval request."""
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": _HEADER_TEXT, "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Situation:*\n{request.situation}"},
                {"type": "mrkdwn", "text": f"*Reason for Approval:*\n{request.reason or '-'}"},
            ],
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Context:*\n{request.context or '-'}"},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Requested Action:*\n{request.requested_action}"},
        },
        {
            "type": "input",
            "block_id": f"{NOTE_BLOCK_PREFIX}{approval_id}",
            "optional": True,
            "label": {"type": "plain_text", "text": "Note for the requester"},
            "element": {"type": "plain_text_input", "action_id": NOTE_ACTION_ID},
        },
        {
            "type": "actions",
            "block_id": approval_id,
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "✅ Approve", "emoji": True},
                    "style": "primary",
                    "value": callback_address,
                    "action_id": f"{APPROVE_PREFIX}{approval_id}",
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "❌ Deny", "emoji": True},
                    "style": "danger",
                    "value": callback_address,
                    "action_id": f"{DENY_PREFIX}{approval_id}",
                },
            ],
        },
    ]


def build_decision_reply(approved: bool, user_id: str | None) -> dict[str, Any]:
    """Interaction response replacing the original message once a decision lands."""
    text = "✅ Request approved" if approved else "❌ Request denied"
    by = f" by <@{user_id}>" if user_id else ""
    return {
        "replace_original": True,
        "text": text,
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": f"{text}{by}"}}],
    }


def build_stale_reply() -> dict[str, Any]:
    """Acknowledgment for a click on an already-handled or expired request."""
    text = "⚠️ This request was already handled or has expired."
    return {
        "replace_original": True,
        "text": text,
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
    }


class SlackNotificationSink:
    """Post approval requests to a Slack channel via ``chat.postMessage``."""

    def __init__(self, client: WebClient, channel_id: str) -> None:
        self._client = client
        self._channel_id = channel_id

    @classmethod
    def from_token(cls, bot_token: str, channel_id: str) -> SlackNotificationSink:
        return cls(WebClient(token=bot_token), channel_id)

    def send(self, request: ApprovalRequest, approval_id: str, callback_address: str) -> None:
        try:
            result = self._client.chat_postMessage(
                channel=self._channel_id,
                text=_HEADER_TEXT,
                blocks=build_approval_blocks(request, approval_id, callback_address),
            )
        except SlackApiError as exc:
            error = exc.response.get("error", "unknown_error") if exc.response else "unknown_error"
            _log.error("Slack rejected approval %s: %s", approval_id, error)
            raise SendError(f"Failed to send approval request: {error}") from exc
        except SlackClientError as exc:
            _log.error("Slack unreachable for approval %s: %s", approval_id, exc)
            raise SendError(f"Failed to send approval request: {exc}") from exc
        _log.info(
            "Approval %s posted to Slack channel %s (ts=%s)",
            approval_id,
            result.get("channel"),
            result.get("ts"),
        )


# ---------------------------------------------------------------------------
# Inbound interactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SlackAction:
    """A reviewer's button click, reduced to what the ingress needs."""

    approval_id: str
    approved: bool
    response: str
    callback_address: str | None
    user_id: str | None


def verify_signature(signing_secret: str, body: bytes, headers: Mapping[str, str]) -> bool:
    """Check ``X-Slack-Signature`` and reject requests older than five minutes."""
    verifier = SignatureVerifier(signing_secret)
    return verifier.is_valid_request(body, dict(headers))


def parse_interaction_body(body: str) -> dict[str, Any]:
    """Decode the ``payload=<json>`` form body Slack posts for interactions."""
    values = parse_qs(body).get("payload")
    if not values:
        raise ValidationError("No payload found in Slack interaction body.")
    try:
        payload = json.loads(values[0])
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Slack payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Slack payload must be a JSON object.")
    return cast(dict[str, Any], payload)


def _note_text(payload: dict[str, Any], approval_id: str) -> str:
    state = payload.get("state")
    values = state.get("values") if isinstance(state, dict) else None
    if not isinstance(values, dict):
        return ""
    block = cast(dict[str, Any], values).get(f"{NOTE_BLOCK_PREFIX}{approval_id}", {})
    note = block.get(NOTE_ACTION_ID, {}) if isinstance(block, dict) else {}
    text = note.get("value") if isinstance(note, dict) else None
    return text.strip() if isinstance(text, str) else ""


def parse_block_action(payload: dict[str, Any]) -> SlackAction:
    """Extract the approval decision from a ``block_actions`` payload."""
    if payload.get("type") != "block_actions":
        raise ValidationError(f"Unsupported Slack payload type: {payload.get('type')!r}")
    actions = payload.get("actions")
    if not isinstance(actions, list) or not actions or not isinstance(actions[0], dict):
        raise ValidationError("Slack payload has no actions.")
    action = cast(dict[str, Any], actions[0])
    approval_id = action.get("block_id")
    action_id = action.get("action_id")
    if not isinstance(approval_id, str) or not isinstance(action_id, str):
        raise ValidationError("Slack action is missing block_id or action_id.")
    if action_id.startswith(APPROVE_PREFIX):
        approved = True
    elif action_id.startswith(DENY_PREFIX):
        approved = False
    else:
        raise ValidationError(f"Unknown Slack action: {action_id!r}")

    note = _note_text(payload, approval_id)
    response = note or ("Approved" if approved else "Denied")
    value = action.get("value")
    user = payload.get("user")
    user_id = user.get("id") if isinstance(user, dict) else None
    return SlackAction(
        approval_id=approval_id,
        approved=approved,
        response=response,
        callback_address=value if isinstance(value, str) and value else None,
        user_id=user_id if isinstance(user_id, str) else None,
    )
