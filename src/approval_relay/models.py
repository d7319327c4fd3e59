"""Pydantic models for approval requests, decisions, and persisted records.

Wire and on-disk JSON uses camelCase keys (``approvalId``, ``requestDetails``)
while Python code uses snake_case attributes.  Always dump with
``by_alias=True`` when the result leaves the process.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from approval_relay.errors import ValidationError


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ApprovalRequest(_WireModel):
    """What the caller wants a human to decide on; carried unchanged to the result."""

    situation: str = Field(description="Description of the situation requiring approval")
    context: str = Field(
        default="",
        description="Relevant context (order numbers, amounts, customer info, etc.)",
    )
    reason: str = Field(default="", description="Why human approval is needed")
    requested_action: str = Field(description="The action to take if approved")


class Decision(_WireModel):
    """The reviewer's answer as delivered through a callback address."""

    approved: StrictBool
    response: str = ""

    @classmethod
    def from_payload(cls, payload: object) -> Decision:
        """Validate an inbound callback body, raising the relay ``ValidationError``."""
        if not isinstance(payload, dict):
            raise ValidationError("Callback payload must be a JSON object.")
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"Malformed callback payload: {exc.error_count()} error(s)") from exc


class ApprovalResult(_WireModel):
    """Persisted outcome of one approval round trip.  Never mutated once written."""

    approval_id: str
    session_id: str
    approved: bool
    response: str
    request_details: ApprovalRequest
    timestamp: int
    """Epoch milliseconds assigned by the store at write time."""


class WebhookRecord(_WireModel):
    """Registry entry binding one approval id to its single-use callback address."""

    approval_id: str
    callback_address: str
    token: str
    timestamp: int


class ApprovalOutcome(_WireModel):
    """What ``request()`` hands back: a final decision or a pending marker."""

    approval_id: str
    session_id: str
    approved: bool
    response: str
    pending: bool = False

    @classmethod
    def pending_for(cls, approval_id: str, session_id: str) -> ApprovalOutcome:
        return cls(
            approval_id=approval_id,
            session_id=session_id,
            approved=False,
            response="pending",
            pending=True,
        )
