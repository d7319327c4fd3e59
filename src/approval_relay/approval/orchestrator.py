"""Approval orchestration: the per-approval state machine.

    CREATED ──► NOTIFIED ──► AWAITING ──► RESOLVED
                   │                         ▲
                   └──► FAILED (SendError)   └── callback delivered

``request()`` covers CREATED → NOTIFIED → AWAITING synchronously and either
returns a pending marker (background mode) or waits for the task
(blocking mode).  The AWAITING → RESOLVED leg runs inside a task hosted by
the :class:`~approval_relay.approval.ports.TaskHost`, which may live in a
different process; it calls :meth:`ApprovalOrchestrator.complete` or
:meth:`ApprovalOrchestrator.fail` with nothing but its persisted arguments.

Dependencies: approval.ports, errors, identity, infra.otel_tracing, models, store
Wired in: runtime.py → build_runtime(), infra/task_host.py, server/routes.py, server/mcp_server.py
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from approval_relay.approval.ports import NotificationSink, TaskHost
from approval_relay.errors import SendError, StorageError
from approval_relay.identity import generate_approval_id, require_session_id
from approval_relay.infra import otel_tracing
from approval_relay.models import ApprovalOutcome, ApprovalRequest, ApprovalResult, Decision
from approval_relay.store.results import ApprovalResultStore
from approval_relay.store.webhooks import WebhookRegistry

_log = logging.getLogger(__name__)


class ApprovalMode(StrEnum):
    """How ``request()`` returns to its caller."""

    BACKGROUND = "background"
    """Return a pending marker right after notification; poll results later."""

    BLOCKING = "blocking"
    """Wait for the awaiting task and return the decision directly."""


CALLBACK_EXPIRED_CAUSE = "callback address expired before a decision arrived"


def error_decision(cause: BaseException | str) -> Decision:
    """Synthetic denial written when an approval cannot complete normally."""
    return Decision(approved=False, response=f"Error: {cause}")


class ApprovalOrchestrator:
    """Issue approval requests and apply their late-arriving decisions."""

    def __init__(
        self,
        *,
        webhooks: WebhookRegistry,
        results: ApprovalResultStore,
        sink: NotificationSink,
        host: TaskHost,
        blocking_timeout_seconds: float | None = None,
    ) -> None:
        self._webhooks = webhooks
        self._results = results
        self._sink = sink
        self._host = host
        self._blocking_timeout = blocking_timeout_seconds

    @property
    def results(self) -> ApprovalResultStore:
        return self._results

    def request(
        self,
        session_id: str,
        request: ApprovalRequest,
        *,
        mode: ApprovalMode = ApprovalMode.BACKGROUND,
    ) -> ApprovalOutcome:
        """Ask a human to decide on *request* within *session_id*.

        Raises :class:`~approval_relay.errors.SendError` when the sink rejects
        the message; in that case no task is scheduled and no result is written.
        """
        require_session_id(session_id)
        approval_id = generate_approval_id()
        span_attrs: dict[str, str | int | float | bool] = {
            "approval_relay.approval_id": approval_id,
            "approval_relay.session_id": session_id,
            "approval_relay.mode": str(mode),
        }
        with otel_tracing.trace_span("approval.request", attributes=span_attrs) as result_attrs:
            record = self._webhooks.register(approval_id)
            _log.info("Approval %s created for session %s", approval_id, session_id)

            try:
                self._sink.send(request, approval_id, record.callback_address)
            except SendError:
                _log.error("Notification for approval %s failed; request abandoned", approval_id)
                self._webhooks.consume(approval_id)
                result_attrs["approval_relay.state"] = "failed"
                raise
            _log.info("Approval %s notified", approval_id)

            try:
                handle = self._host.schedule(approval_id, session_id, request)
            except Exception:
                _log.exception("Scheduling the awaiting task for %s failed", approval_id)
                self._webhooks.consume(approval_id)
                result_attrs["approval_relay.state"] = "failed"
                raise
            _log.info("Approval %s awaiting decision in task %s", approval_id, handle.task_id)
            result_attrs["approval_relay.state"] = "awaiting"

        if mode is ApprovalMode.BACKGROUND:
            return ApprovalOutcome.pending_for(approval_id, session_id)

        try:
            decision = handle.wait(timeout=self._blocking_timeout)
        except TimeoutError:
            raise
        except Exception:
            # A failed task has already stored its synthetic denial.
            stored = self._results.for_approval(session_id, approval_id)
            if stored is None:
                raise
            _log.warning("Approval %s task failed; returning recorded result", approval_id)
            decision = Decision(approved=stored.approved, response=stored.response)
        return ApprovalOutcome(
            approval_id=approval_id,
            session_id=session_id,
            approved=decision.approved,
            response=decision.response,
        )

    def callback_live(self, approval_id: str) -> bool:
        """Whether the callback address for *approval_id* can still deliver a decision."""
        return self._webhooks.resolve(approval_id) is not None

    def complete(
        self,
        approval_id: str,
        session_id: str,
        request: ApprovalRequest,
        payload: dict[str, Any],
    ) -> Decision:
        """Apply a delivered callback payload: record the result, then consume the address.

        On any failure a synthetic error result is written before re-raising so
        pollers are never left waiting on a result that will not arrive.
        """
        span_attrs: dict[str, str | int | float | bool] = {
            "approval_relay.approval_id": approval_id,
            "approval_relay.session_id": session_id,
        }
        with otel_tracing.trace_span("approval.resolve", attributes=span_attrs) as result_attrs:
            try:
                decision = Decision.from_payload(payload)
                self._results.record(session_id, approval_id, decision, request)
                self._webhooks.consume(approval_id)
            except Exception as exc:
                _log.exception("Resolving approval %s failed", approval_id)
                self.fail(approval_id, session_id, request, exc)
                raise
            result_attrs["approval_relay.approved"] = decision.approved
        _log.info("Approval %s resolved (approved=%s)", approval_id, decision.approved)
        return decision

    def fail(
        self,
        approval_id: str,
        session_id: str,
        request: ApprovalRequest,
        cause: BaseException | str,
    ) -> ApprovalResult | None:
        """Record a synthetic denial for an approval that cannot complete.

        Returns ``None`` when the store itself is unavailable; the original
        failure is what the caller re-raises in that case.
        """
        try:
            result = self._results.record(session_id, approval_id, error_decision(cause), request)
        except StorageError:
            _log.exception("Could not record failure result for approval %s", approval_id)
            return None
        try:
            self._webhooks.consume(approval_id)
        except StorageError:
            _log.exception("Could not consume callback address for approval %s", approval_id)
        _log.warning("Approval %s recorded as failed: %s", approval_id, cause)
        return result
