"""FastMCP server exposing approval tools to the conversational layer over streamable HTTP.

``approval.request`` issues a fire-and-forget request and returns at once;
``approval.check`` polls the results recorded for a session.  Both return a
JSON envelope ``{"type", "data", "meta"}`` rather than raising, so the model
on the other end always sees a readable outcome.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastmcp import FastMCP

from approval_relay.approval.orchestrator import ApprovalMode
from approval_relay.approval.polling import check_approval_status
from approval_relay.errors import ApprovalRelayError
from approval_relay.identity import require_session_id, resolve_session_id
from approval_relay.models import ApprovalRequest
from approval_relay.runtime import Runtime, get_runtime

_LOG = logging.getLogger(__name__)

_SERVER_NAME = "approval_relay"


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _json_envelope(
    envelope_type: str,
    data: dict[str, Any],
    *,
    tool: str,
    meta: dict[str, Any] | None = None,
) -> str:
    envelope_meta: dict[str, Any] = {"tool": tool, "timestamp": _utc_now_iso()}
    if meta:
        envelope_meta.update(meta)
    payload = {"type": envelope_type, "data": data, "meta": envelope_meta}
    return json.dumps(payload, ensure_ascii=True, allow_nan=False)


def _relay_error(tool: str, error: ApprovalRelayError) -> str:
    return _json_envelope(f"error.{error.code}", {"message": str(error)}, tool=tool)


def _runtime_for_tool(tool: str) -> tuple[Runtime | None, str | None]:
    try:
        return get_runtime(), None
    except RuntimeError as exc:
        return None, _json_envelope(
            "error.runtime_uninitialized",
            {"message": str(exc)},
            tool=tool,
        )


def approval_request(
    situation: str,
    requested_action: str,
    context: str = "",
    reason: str = "",
    session_id: str | None = None,
) -> str:
    """Ask a human to approve an action; returns immediately with a pending marker.

    Poll ``approval.check`` with the returned session id to see the decision.
    """
    tool = "approval.request"
    runtime, error = _runtime_for_tool(tool)
    if runtime is None:
        return error or ""

    resolved_session, created = resolve_session_id(session_id)
    request = ApprovalRequest(
        situation=situation,
        context=context,
        reason=reason,
        requested_action=requested_action,
    )
    try:
        outcome = runtime.orchestrator.request(
            resolved_session, request, mode=ApprovalMode.BACKGROUND
        )
    except ApprovalRelayError as exc:
        _LOG.warning("approval.request failed: %s", exc)
        return _relay_error(tool, exc)
    return _json_envelope(
        "approval.pending",
        outcome.to_wire(),
        tool=tool,
        meta={"session_created": created},
    )


def approval_check(session_id: str) -> str:
    """Return every approval decision recorded so far for *session_id*."""
    tool = "approval.check"
    runtime, error = _runtime_for_tool(tool)
    if runtime is None:
        return error or ""

    try:
        require_session_id(session_id)
        status = check_approval_status(runtime.results, session_id)
    except ApprovalRelayError as exc:
        return _relay_error(tool, exc)
    return _json_envelope("approval.status", status, tool=tool)


def _register_tools(server: Any) -> None:
    server.tool(name="approval.request")(approval_request)
    server.tool(name="approval.check")(approval_check)


def create_mcp_server(fastmcp_class: type[Any] | None = None) -> Any:
    """Create and register the MCP server instance."""
    server_class = fastmcp_class if fastmcp_class is not None else FastMCP
    server = server_class(_SERVER_NAME)
    _register_tools(server)
    return server
