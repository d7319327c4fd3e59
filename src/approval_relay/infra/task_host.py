"""DBOS-hosted awaiting tasks for pending approvals.

Each approval gets one durable workflow with id ``approval-<approval_id>``.
The workflow blocks on ``DBOS.recv`` for a message on the
``approval_decision`` topic; the callback ingress sends that message with
``DBOS.send``.  Because DBOS persists both the workflow arguments and the
message mailbox, the wait survives process restarts and a decision sent to
any process sharing the system database reaches the right workflow.

Dependencies: approval.orchestrator, approval.ports, errors, models, runtime
Wired in: cli.py → _launch_dbos() → DBOSTaskHost
"""

from __future__ import annotations

import logging
import time
from typing import Any

from approval_relay.approval.orchestrator import CALLBACK_EXPIRED_CAUSE
from approval_relay.errors import ApprovalDeadlineError, StaleCallbackError
from approval_relay.models import ApprovalRequest, Decision
from approval_relay.runtime import get_runtime

try:
    from dbos import DBOS, DBOSConfig, SetWorkflowID, WorkflowHandle
    from dbos._error import DBOSNonExistentWorkflowError
except ModuleNotFoundError as exc:
    missing_package = exc.name or "unknown package"
    raise SystemExit(
        f"Missing DBOS dependency package `{missing_package}`. "
        "Run `pip install -e .` so `dbos` is installed."
    ) from exc

_log = logging.getLogger(__name__)

DECISION_TOPIC = "approval_decision"
_WORKFLOW_ID_PREFIX = "approval-"
# Upper bound for one DBOS.recv call; the callback address is re-checked between windows.
_DEFAULT_RECV_WINDOW_SECONDS = 3600.0
_DEFAULT_POLL_INTERVAL_SECONDS = 1.0

# Workflow statuses treated as terminal (no more polling needed).
_TERMINAL_STATUSES: frozenset[str] = frozenset(
    {"SUCCESS", "ERROR", "MAX_RECOVERY_ATTEMPTS_EXCEEDED", "CANCELLED"}
)


def workflow_id_for(approval_id: str) -> str:
    return f"{_WORKFLOW_ID_PREFIX}{approval_id}"


def _wrap_task_error(error: Exception) -> RuntimeError:
    """Convert relay and pydantic errors into a picklable built-in RuntimeError."""
    return RuntimeError(f"{error.__class__.__name__}: {error}")


@DBOS.step()
def complete_approval_step(
    approval_id: str,
    session_id: str,
    request_data: dict[str, Any],
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Record the delivered decision and consume the callback address."""
    orchestrator = get_runtime().orchestrator
    request = ApprovalRequest.model_validate(request_data)
    try:
        decision = orchestrator.complete(approval_id, session_id, request, payload)
    except Exception as exc:
        raise _wrap_task_error(exc) from exc
    return decision.to_wire()


@DBOS.step()
def fail_approval_step(
    approval_id: str,
    session_id: str,
    request_data: dict[str, Any],
    cause: str,
) -> None:
    """Write the synthetic error result for an approval that will never resolve."""
    orchestrator = get_runtime().orchestrator
    request = ApprovalRequest.model_validate(request_data)
    orchestrator.fail(approval_id, session_id, request, cause)


@DBOS.step()
def callback_live_step(approval_id: str) -> bool:
    """Whether the callback address can still deliver a decision to this workflow."""
    return get_runtime().orchestrator.callback_live(approval_id)


def _receive_decision(
    approval_id: str,
    deadline_seconds: float | None,
    recv_window_seconds: float = _DEFAULT_RECV_WINDOW_SECONDS,
) -> dict[str, Any]:
    """Block inside the workflow until one decision message arrives.

    Without a deadline the wait is split into windows.  After each empty
    window the callback address is checked; once it has expired no decision
    can reach this workflow, so the wait ends with ``ApprovalDeadlineError``.
    """
    if deadline_seconds is not None:
        payload = DBOS.recv(DECISION_TOPIC, timeout_seconds=deadline_seconds)
        if payload is None:
            raise ApprovalDeadlineError(
                f"approval deadline of {deadline_seconds:g} seconds exceeded"
            )
        return payload
    while True:
        payload = DBOS.recv(DECISION_TOPIC, timeout_seconds=recv_window_seconds)
        if payload is not None:
            return payload
        if not callback_live_step(approval_id):
            raise ApprovalDeadlineError(CALLBACK_EXPIRED_CAUSE)
        _log.debug("Approval %s still awaiting a decision", approval_id)


@DBOS.workflow()
def await_approval_workflow(
    approval_id: str,
    session_id: str,
    request_data: dict[str, Any],
    deadline_seconds: float | None = None,
    recv_window_seconds: float = _DEFAULT_RECV_WINDOW_SECONDS,
) -> dict[str, Any]:
    """Await the single decision for *approval_id* and persist it."""
    _log.info("Awaiting decision for approval %s (session %s)", approval_id, session_id)
    try:
        payload = _receive_decision(approval_id, deadline_seconds, recv_window_seconds)
    except ApprovalDeadlineError as exc:
        fail_approval_step(approval_id, session_id, request_data, str(exc))
        raise _wrap_task_error(exc) from exc
    return complete_approval_step(approval_id, session_id, request_data, payload)


class DBOSTaskHandle:
    """Blocking view of one approval workflow."""

    def __init__(
        self,
        handle: WorkflowHandle[dict[str, Any]],
        *,
        poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._handle = handle
        self._poll_interval = poll_interval_seconds
        self.task_id = handle.get_workflow_id()

    def wait(self, timeout: float | None = None) -> Decision:
        """Poll the workflow until it is terminal and return its decision.

        Raises ``TimeoutError`` when *timeout* elapses and ``RuntimeError``
        when the workflow ends in a non-SUCCESS state.
        """
        started = time.monotonic()
        while True:
            status = self._handle.get_status()
            if status.status in _TERMINAL_STATUSES:
                if status.status == "SUCCESS":
                    return Decision.model_validate(self._handle.get_result())
                # get_result() re-raises the recorded workflow error.
                self._handle.get_result()
                raise RuntimeError(
                    f"Approval task {self.task_id} ended with unexpected status: {status.status}."
                )
            if timeout is not None and time.monotonic() - started >= timeout:
                raise TimeoutError(f"Approval task {self.task_id} still pending after {timeout:g}s.")
            time.sleep(self._poll_interval)


class DBOSTaskHost:
    """:class:`~approval_relay.approval.ports.TaskHost` backed by DBOS workflows."""

    def __init__(
        self,
        *,
        deadline_seconds: float | None = None,
        recv_window_seconds: float = _DEFAULT_RECV_WINDOW_SECONDS,
        poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._deadline = deadline_seconds
        self._recv_window = recv_window_seconds
        self._poll_interval = poll_interval_seconds

    def schedule(
        self,
        approval_id: str,
        session_id: str,
        request: ApprovalRequest,
    ) -> DBOSTaskHandle:
        # A fixed workflow id makes re-scheduling the same approval return the existing run.
        with SetWorkflowID(workflow_id_for(approval_id)):
            handle = DBOS.start_workflow(
                await_approval_workflow,
                approval_id,
                session_id,
                request.to_wire(),
                self._deadline,
                self._recv_window,
            )
        return DBOSTaskHandle(handle, poll_interval_seconds=self._poll_interval)

    def deliver(self, approval_id: str, payload: dict[str, Any]) -> None:
        try:
            DBOS.send(workflow_id_for(approval_id), payload, topic=DECISION_TOPIC)
        except DBOSNonExistentWorkflowError as exc:
            raise StaleCallbackError(f"No awaiting task for approval {approval_id}") from exc

    def retrieve(self, approval_id: str) -> DBOSTaskHandle:
        """Reattach to an existing approval workflow, e.g. after a restart."""
        handle: WorkflowHandle[dict[str, Any]] = DBOS.retrieve_workflow(workflow_id_for(approval_id))
        return DBOSTaskHandle(handle, poll_interval_seconds=self._poll_interval)
