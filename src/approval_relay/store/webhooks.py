"""Webhook registry: one single-use callback address per approval id.

Flat key space (no namespace) keyed by approval id, one hour TTL by default.
Each address carries a random token so a guessed approval id alone cannot
strike it.

Dependencies: errors, identity, models, store.kv_store
Wired in: approval/orchestrator.py, approval/ingress.py, server/routes.py
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path

from approval_relay.identity import require_approval_id
from approval_relay.models import WebhookRecord
from approval_relay.store.kv_store import TTLStore

_log = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TTL_SECONDS = 3600
_TOKEN_BYTES = 24


class WebhookRegistry:
    """Allocate, resolve, and consume callback addresses."""

    def __init__(self, store: TTLStore, *, public_base_url: str) -> None:
        self._store = store
        self._base_url = public_base_url.rstrip("/")

    @classmethod
    def open(
        cls,
        root: Path,
        *,
        public_base_url: str,
        ttl_seconds: float = DEFAULT_WEBHOOK_TTL_SECONDS,
    ) -> WebhookRegistry:
        return cls(TTLStore(root, ttl_seconds=ttl_seconds), public_base_url=public_base_url)

    @property
    def store(self) -> TTLStore:
        return self._store

    def callback_url(self, approval_id: str, token: str) -> str:
        return f"{self._base_url}/api/callbacks/{approval_id}/{token}"

    def register(self, approval_id: str) -> WebhookRecord:
        """Allocate a fresh address for *approval_id* and persist it.

        Raises :class:`~approval_relay.errors.DuplicateApprovalError` if a live
        record already exists for the id.
        """
        require_approval_id(approval_id)
        token = secrets.token_urlsafe(_TOKEN_BYTES)
        stored = self._store.create(
            approval_id,
            {
                "approvalId": approval_id,
                "callbackAddress": self.callback_url(approval_id, token),
                "token": token,
            },
        )
        record = WebhookRecord.model_validate(stored)
        _log.info("Registered callback address for %s", approval_id)
        return record

    def resolve(self, approval_id: str) -> WebhookRecord | None:
        """Return the live record for *approval_id*, or ``None`` if consumed or expired."""
        require_approval_id(approval_id)
        raw = self._store.get(approval_id)
        if raw is None:
            _log.info("No live callback address for %s", approval_id)
            return None
        return WebhookRecord.model_validate(raw)

    def matches(self, approval_id: str, token: str) -> WebhookRecord | None:
        """Resolve *approval_id* and return its record only if *token* matches."""
        record = self.resolve(approval_id)
        if record is None or not secrets.compare_digest(record.token, token):
            return None
        return record

    def consume(self, approval_id: str) -> bool:
        """Delete the record so the address cannot be struck again."""
        require_approval_id(approval_id)
        removed = self._store.delete(approval_id)
        if removed:
            _log.info("Consumed callback address for %s", approval_id)
        return removed

    def list_live(self) -> list[WebhookRecord]:
        return [WebhookRecord.model_validate(raw) for raw in self._store.list()]

    def clear(self) -> int:
        """Delete every record; returns the number removed."""
        removed = 0
        for record in self.list_live():
            if self._store.delete(record.approval_id):
                removed += 1
        return removed
