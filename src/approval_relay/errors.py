"""Error taxonomy shared by stores, orchestration, and HTTP surfaces.

Dependencies: (none, leaf module)
Wired in: every module that raises or maps relay failures
"""

from __future__ import annotations


class ApprovalRelayError(Exception):
    """Base class for relay failures; ``code`` is stable for API payloads."""

    code = "relay_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ValidationError(ApprovalRelayError):
    """Malformed identifier or callback payload rejected at the boundary."""

    code = "invalid_payload"


class SendError(ApprovalRelayError):
    """The notification sink was unreachable or rejected the message."""

    code = "send_failed"


class StorageError(ApprovalRelayError):
    """A key-value store read or write failed."""

    code = "storage_failure"


class DuplicateApprovalError(StorageError):
    """A live webhook record already exists for the approval id."""

    code = "duplicate_approval"


class StaleCallbackError(ApprovalRelayError):
    """A decision arrived for an approval with no live webhook record."""

    code = "stale_callback"


class ApprovalDeadlineError(ApprovalRelayError):
    """No decision arrived before the configured approval deadline."""

    code = "deadline_exceeded"
