"""Session and approval identifier generation and structural validation.

Identifiers are ``<prefix>_<epoch-ms>_<16 hex chars>``: the millisecond prefix
keeps them roughly time-ordered and the 64-bit random suffix comes from
:mod:`secrets`.  Validation is purely structural, so no lookup is needed.

Dependencies: errors
Wired in: approval/orchestrator.py, store/webhooks.py, store/results.py, server/routes.py
"""

from __future__ import annotations

import re
import secrets
import time

from approval_relay.errors import ValidationError

SESSION_PREFIX = "sess"
APPROVAL_PREFIX = "approval"
_RANDOM_BYTES = 8

_SESSION_PATTERN = re.compile(r"^sess_\d+_[a-f0-9]{16}$")
_APPROVAL_PATTERN = re.compile(r"^approval_\d+_[a-f0-9]{16}$")


def _new_identifier(prefix: str) -> str:
    timestamp_ms = time.time_ns() // 1_000_000
    return f"{prefix}_{timestamp_ms}_{secrets.token_hex(_RANDOM_BYTES)}"


def generate_session_id() -> str:
    """Return a fresh session id scoping one conversation's approvals."""
    return _new_identifier(SESSION_PREFIX)


def is_valid_session_id(candidate: object) -> bool:
    return isinstance(candidate, str) and _SESSION_PATTERN.fullmatch(candidate) is not None


def generate_approval_id() -> str:
    """Return a fresh, never-reused approval correlation id."""
    return _new_identifier(APPROVAL_PREFIX)


def is_valid_approval_id(candidate: object) -> bool:
    return isinstance(candidate, str) and _APPROVAL_PATTERN.fullmatch(candidate) is not None


def require_session_id(candidate: object) -> str:
    """Return *candidate* unchanged or raise :class:`ValidationError`."""
    if not is_valid_session_id(candidate):
        raise ValidationError(f"Malformed session id: {candidate!r}", code="invalid_session_id")
    return str(candidate)


def require_approval_id(candidate: object) -> str:
    """Return *candidate* unchanged or raise :class:`ValidationError`."""
    if not is_valid_approval_id(candidate):
        raise ValidationError(f"Malformed approval id: {candidate!r}", code="invalid_approval_id")
    return str(candidate)


def resolve_session_id(candidate: str | None) -> tuple[str, bool]:
    """Return ``(session_id, created)``, minting a new id when *candidate* is unusable."""
    if candidate is not None and is_valid_session_id(candidate):
        return candidate, False
    return generate_session_id(), True
