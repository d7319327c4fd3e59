"""Polling views over stored approval results.

Dependencies: models, store.results
Wired in: server/routes.py → list_approvals(), server/mcp_server.py → approval_check()
"""

from __future__ import annotations

from typing import Any

from approval_relay.models import ApprovalResult
from approval_relay.store.results import ApprovalResultStore


def _summary(result: ApprovalResult) -> dict[str, Any]:
    return {
        "approved": result.approved,
        "response": result.response,
        "situation": result.request_details.situation,
        "requestedAction": result.request_details.requested_action,
    }


def poll_session(results: ApprovalResultStore, session_id: str) -> dict[str, Any]:
    """Return the polling API body for *session_id*, oldest result first."""
    found = sorted(results.for_session(session_id), key=lambda r: r.timestamp)
    return {
        "hasResults": bool(found),
        "results": [
            {"approvalId": r.approval_id, **_summary(r), "timestamp": r.timestamp} for r in found
        ],
    }


def check_approval_status(results: ApprovalResultStore, session_id: str) -> dict[str, Any]:
    """Condensed status for the conversational layer: decisions without bookkeeping fields."""
    found = sorted(results.for_session(session_id), key=lambda r: r.timestamp)
    return {"hasResults": bool(found), "results": [_summary(r) for r in found]}
