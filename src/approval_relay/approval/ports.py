"""Interfaces for the collaborators the orchestrator drives but does not own.

Dependencies: models
Wired in: approval/orchestrator.py, approval/ingress.py, infra/task_host.py, infra/slack.py
"""

from __future__ import annotations

from typing import Any, Protocol

from approval_relay.models import ApprovalRequest, Decision


class NotificationSink(Protocol):
    """Presents a request to a human and later strikes the callback address."""

    def send(self, request: ApprovalRequest, approval_id: str, callback_address: str) -> None:
        """Deliver the request; raise :class:`~approval_relay.errors.SendError` on failure.

        The sink must round-trip *approval_id* into whatever payload later
        reaches the callback address.
        """
        ...


class TaskHandle(Protocol):
    """Handle to one scheduled awaiting task."""

    task_id: str

    def wait(self, timeout: float | None = None) -> Decision:
        """Block until the task resolves and return its decision.

        Re-raises the task's failure; raises ``TimeoutError`` if *timeout*
        elapses first.
        """
        ...


class TaskHost(Protocol):
    """Durable execution capability hosting the AWAITING phase of each approval."""

    def schedule(self, approval_id: str, session_id: str, request: ApprovalRequest) -> TaskHandle:
        """Start the awaiting task; scheduling the same approval twice returns the same task."""
        ...

    def deliver(self, approval_id: str, payload: dict[str, Any]) -> None:
        """Hand a decision payload to the task awaiting *approval_id*.

        Raises :class:`~approval_relay.errors.StaleCallbackError` when no task
        has been scheduled for *approval_id* yet.
        """
        ...
