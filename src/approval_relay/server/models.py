"""Pydantic models for the relay's REST request and response bodies."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from approval_relay.approval.orchestrator import ApprovalMode
from approval_relay.models import ApprovalRequest


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(_ApiModel):
    """GET /api/health response."""

    status: str = "ok"
    version: str = "0.1.0"


class SessionCreated(_ApiModel):
    """POST /api/sessions response."""

    success: bool = True
    session_id: str


class ApprovalRequestBody(_ApiModel):
    """POST /api/approvals request body."""

    session_id: str | None = None
    situation: str
    context: str = ""
    reason: str = ""
    requested_action: str
    mode: ApprovalMode = ApprovalMode.BACKGROUND

    def to_request(self) -> ApprovalRequest:
        return ApprovalRequest(
            situation=self.situation,
            context=self.context,
            reason=self.reason,
            requested_action=self.requested_action,
        )


class ApprovalRequestResponse(_ApiModel):
    """POST /api/approvals response: a final decision or a pending marker."""

    success: bool = True
    approval_id: str
    session_id: str
    session_created: bool = False
    approved: bool
    response: str
    pending: bool


class CallbackAccepted(_ApiModel):
    """POST /api/callbacks/{approvalId}/{token} response."""

    success: bool = True
    approval_id: str
    status: str


class WebhookListing(_ApiModel):
    """GET /api/debug/webhooks response."""

    success: bool = True
    storage_dir: str
    count: int
    webhooks: list[dict[str, Any]] = Field(default_factory=list)


class WebhooksDeleted(_ApiModel):
    """DELETE /api/debug/webhooks response."""

    success: bool = True
    deleted: int
