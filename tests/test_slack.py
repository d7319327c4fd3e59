"""Tests for the Slack sink, Block Kit layout, and interaction parsing."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any
from unittest.mock import MagicMock
from urllib.parse import urlencode

import pytest
from slack_sdk.errors import SlackApiError, SlackRequestError

from approval_relay.errors import SendError, ValidationError
from approval_relay.infra.slack import (
    SlackNotificationSink,
    build_approval_blocks,
    build_decision_reply,
    build_stale_reply,
    parse_block_action,
    parse_interaction_body,
    verify_signature,
)
from approval_relay.models import ApprovalRequest

_APPROVAL_ID = "approval_1700000000000_0123456789abcdef"
_CALLBACK = f"http://relay.test/api/callbacks/{_APPROVAL_ID}/tok"


def _block_action(action_id: str, *, note: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "block_actions",
        "user": {"id": "U123", "name": "reviewer"},
        "actions": [
            {
                "type": "button",
                "block_id": _APPROVAL_ID,
                "action_id": action_id,
                "value": _CALLBACK,
            }
        ],
    }
    if note is not None:
        payload["state"] = {
            "values": {f"note_{_APPROVAL_ID}": {"note": {"type": "plain_text_input", "value": note}}}
        }
    return payload


class TestBlocks:
    def test_actions_block_carries_approval_id_and_callback(
        self, dragon_request: ApprovalRequest
    ) -> None:
        blocks = build_approval_blocks(dragon_request, _APPROVAL_ID, _CALLBACK)
        actions = next(block for block in blocks if block["type"] == "actions")
        assert actions["block_id"] == _APPROVAL_ID
        assert [e["action_id"] for e in actions["elements"]] == [
            f"approve_{_APPROVAL_ID}",
            f"deny_{_APPROVAL_ID}",
        ]
        assert {e["value"] for e in actions["elements"]} == {_CALLBACK}

    def test_request_fields_are_rendered(self, dragon_request: ApprovalRequest) -> None:
        rendered = json.dumps(build_approval_blocks(dragon_request, _APPROVAL_ID, _CALLBACK))
        assert "wants a dragon" in rendered
        assert "approve dragon" in rendered

    def test_note_input_block(self, dragon_request: ApprovalRequest) -> None:
        blocks = build_approval_blocks(dragon_request, _APPROVAL_ID, _CALLBACK)
        note = next(block for block in blocks if block["type"] == "input")
        assert note["block_id"] == f"note_{_APPROVAL_ID}"
        assert note["optional"] is True


class TestSink:
    def test_send_posts_to_channel(self, dragon_request: ApprovalRequest) -> None:
        client = MagicMock()
        client.chat_postMessage.return_value = {"ok": True, "channel": "C1", "ts": "1.2"}
        SlackNotificationSink(client, "C1").send(dragon_request, _APPROVAL_ID, _CALLBACK)

        kwargs = client.chat_postMessage.call_args.kwargs
        assert kwargs["channel"] == "C1"
        assert kwargs["blocks"][-1]["block_id"] == _APPROVAL_ID

    def test_api_error_becomes_send_error(self, dragon_request: ApprovalRequest) -> None:
        client = MagicMock()
        client.chat_postMessage.side_effect = SlackApiError(
            "channel_not_found", {"ok": False, "error": "channel_not_found"}
        )
        with pytest.raises(SendError, match="channel_not_found"):
            SlackNotificationSink(client, "C1").send(dragon_request, _APPROVAL_ID, _CALLBACK)

    def test_transport_error_becomes_send_error(self, dragon_request: ApprovalRequest) -> None:
        client = MagicMock()
        client.chat_postMessage.side_effect = SlackRequestError("connection refused")
        with pytest.raises(SendError, match="connection refused"):
            SlackNotificationSink(client, "C1").send(dragon_request, _APPROVAL_ID, _CALLBACK)


class TestParsing:
    def test_approve_click_defaults_response(self) -> None:
        action = parse_block_action(_block_action(f"approve_{_APPROVAL_ID}"))
        assert action.approval_id == _APPROVAL_ID
        assert action.approved is True
        assert action.response == "Approved"
        assert action.callback_address == _CALLBACK
        assert action.user_id == "U123"

    def test_deny_click_defaults_response(self) -> None:
        action = parse_block_action(_block_action(f"deny_{_APPROVAL_ID}"))
        assert action.approved is False
        assert action.response == "Denied"

    def test_note_becomes_response(self) -> None:
        action = parse_block_action(_block_action(f"deny_{_APPROVAL_ID}", note="  not today "))
        assert action.response == "not today"

    def test_blank_note_falls_back_to_default(self) -> None:
        action = parse_block_action(_block_action(f"approve_{_APPROVAL_ID}", note="   "))
        assert action.response == "Approved"

    @pytest.mark.parametrize("state", [None, "x", {"values": None}])
    def test_missing_note_state_falls_back_to_default(self, state: object) -> None:
        payload = _block_action(f"deny_{_APPROVAL_ID}")
        payload["state"] = state
        assert parse_block_action(payload).response == "Denied"

    def test_unknown_action_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_block_action(_block_action("snooze"))

    def test_wrong_payload_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_block_action({"type": "view_submission"})

    def test_missing_actions_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_block_action({"type": "block_actions", "actions": []})

    def test_form_body_round_trip(self) -> None:
        payload = _block_action(f"approve_{_APPROVAL_ID}")
        body = urlencode({"payload": json.dumps(payload)})
        assert parse_interaction_body(body) == payload

    @pytest.mark.parametrize("body", ["", "foo=bar", "payload=%7Bnot-json", "payload=%5B%5D"])
    def test_bad_form_body_rejected(self, body: str) -> None:
        with pytest.raises(ValidationError):
            parse_interaction_body(body)


class TestReplies:
    def test_decision_reply_mentions_user(self) -> None:
        reply = build_decision_reply(True, "U123")
        assert reply["replace_original"] is True
        assert reply["blocks"][0]["text"]["text"] == "✅ Request approved by <@U123>"
        assert build_decision_reply(False, "U9")["blocks"][0]["text"]["text"] == (
            "❌ Request denied by <@U9>"
        )

    def test_stale_reply_is_distinct(self) -> None:
        assert build_stale_reply()["text"] == "⚠️ This request was already handled or has expired."


def _sign(secret: str, body: bytes, timestamp: str) -> str:
    base = f"v0:{timestamp}:{body.decode('utf-8')}".encode()
    return "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()


class TestSignature:
    def test_valid_signature(self) -> None:
        body = b"payload=%7B%7D"
        timestamp = str(int(time.time()))
        headers = {
            "X-Slack-Request-Timestamp": timestamp,
            "X-Slack-Signature": _sign("secret", body, timestamp),
        }
        assert verify_signature("secret", body, headers) is True

    def test_wrong_secret(self) -> None:
        body = b"payload=%7B%7D"
        timestamp = str(int(time.time()))
        headers = {
            "X-Slack-Request-Timestamp": timestamp,
            "X-Slack-Signature": _sign("other", body, timestamp),
        }
        assert verify_signature("secret", body, headers) is False

    def test_stale_timestamp(self) -> None:
        body = b"payload=%7B%7D"
        timestamp = str(int(time.time()) - 3600)
        headers = {
            "X-Slack-Request-Timestamp": timestamp,
            "X-Slack-Signature": _sign("secret", body, timestamp),
        }
        assert verify_signature("secret", body, headers) is False
