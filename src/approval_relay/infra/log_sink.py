"""Notification sink that only logs, for local development without Slack.

The log line includes the ``curl`` command that strikes the callback address,
so a developer can play the reviewer from a terminal.

Dependencies: models
Wired in: cli.py → build_sink() when APPROVAL_SINK=log
"""

from __future__ import annotations

import json
import logging

from approval_relay.models import ApprovalRequest

_log = logging.getLogger(__name__)


class LoggingNotificationSink:
    """Log approval requests instead of sending them anywhere."""

    def send(self, request: ApprovalRequest, approval_id: str, callback_address: str) -> None:
        approve_body = json.dumps({"approved": True, "response": "Approved"})
        _log.warning(
            "APPROVAL REQUIRED %s\n"
            "  Situation: %s\n"
            "  Context: %s\n"
            "  Reason: %s\n"
            "  Requested action: %s\n"
            "  To approve:\n"
            "    curl -X POST -H 'Content-Type: application/json' -d '%s' %s",
            approval_id,
            request.situation,
            request.context,
            request.reason,
            request.requested_action,
            approve_body,
            callback_address,
        )
