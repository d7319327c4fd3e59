"""API key authentication for consumer-facing routes.

Callback addresses and the Slack ingress are not covered: the former are
authenticated by their token, the latter by Slack's request signature.
"""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status

from approval_relay.runtime import get_runtime


def get_api_key() -> str | None:
    """Return configured API key, or None if auth is disabled."""
    return get_runtime().config.api_key


def verify_api_key(request: Request) -> None:
    """Verify X-API-Key header against configured key. No-op if key not set."""
    expected = get_api_key()
    if expected is None:
        return
    provided = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
