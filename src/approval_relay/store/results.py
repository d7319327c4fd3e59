"""Approval result store: decisions partitioned by session, 24 hour TTL by default.

Dependencies: identity, models, store.kv_store
Wired in: approval/orchestrator.py, approval/polling.py, server/routes.py
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_relay.identity import require_approval_id, require_session_id
from approval_relay.models import ApprovalRequest, ApprovalResult, Decision
from approval_relay.store.kv_store import TTLStore

_log = logging.getLogger(__name__)

DEFAULT_RESULT_TTL_SECONDS = 24 * 60 * 60


class ApprovalResultStore:
    """Persist and look up :class:`ApprovalResult` records."""

    def __init__(self, store: TTLStore) -> None:
        self._store = store

    @classmethod
    def open(cls, root: Path, *, ttl_seconds: float = DEFAULT_RESULT_TTL_SECONDS) -> ApprovalResultStore:
        return cls(TTLStore(root, ttl_seconds=ttl_seconds))

    @property
    def store(self) -> TTLStore:
        return self._store

    def record(
        self,
        session_id: str,
        approval_id: str,
        decision: Decision,
        request: ApprovalRequest,
    ) -> ApprovalResult:
        """Write the result for *approval_id*; a second call overwrites the first."""
        require_session_id(session_id)
        require_approval_id(approval_id)
        stored = self._store.put(
            approval_id,
            {
                "approvalId": approval_id,
                "sessionId": session_id,
                "approved": decision.approved,
                "response": decision.response,
                "requestDetails": request.to_wire(),
            },
            namespace=session_id,
        )
        _log.info(
            "Stored approval result for session %s, approval %s (approved=%s)",
            session_id,
            approval_id,
            decision.approved,
        )
        return ApprovalResult.model_validate(stored)

    def for_session(self, session_id: str) -> list[ApprovalResult]:
        """Return every live result for *session_id* in no particular order."""
        require_session_id(session_id)
        results = [ApprovalResult.model_validate(raw) for raw in self._store.list(session_id)]
        _log.debug("Found %d approval result(s) for session %s", len(results), session_id)
        return results

    def for_approval(self, session_id: str, approval_id: str) -> ApprovalResult | None:
        require_session_id(session_id)
        require_approval_id(approval_id)
        raw = self._store.get(approval_id, namespace=session_id)
        return None if raw is None else ApprovalResult.model_validate(raw)

    def delete(self, session_id: str, approval_id: str) -> bool:
        require_session_id(session_id)
        require_approval_id(approval_id)
        return self._store.delete(approval_id, namespace=session_id)
