"""Callback ingress: route an inbound human decision to the task awaiting it.

A decision is delivered only while the approval's webhook record is live.
Once the awaiting task consumes the record (or it expires), further
deliveries are acknowledged as stale and never reach a task.

Dependencies: approval.ports, errors, identity, infra.otel_tracing, models, store.webhooks
Wired in: runtime.py → build_runtime(), server/callback_routes.py
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from approval_relay.approval.ports import TaskHost
from approval_relay.errors import StaleCallbackError
from approval_relay.identity import require_approval_id
from approval_relay.infra import otel_tracing
from approval_relay.models import Decision
from approval_relay.store.webhooks import WebhookRegistry

_log = logging.getLogger(__name__)


class DeliveryStatus(StrEnum):
    DELIVERED = "delivered"
    STALE = "stale"


@dataclass(frozen=True)
class DeliveryReceipt:
    """Outcome of one delivery attempt, safe to echo back to the sink."""

    approval_id: str
    status: DeliveryStatus
    decision: Decision

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


class CallbackIngress:
    """Resolve approval ids to live callback addresses and hand over decisions."""

    def __init__(self, *, webhooks: WebhookRegistry, host: TaskHost) -> None:
        self._webhooks = webhooks
        self._host = host

    def deliver(
        self,
        approval_id: str,
        decision: Decision,
        *,
        token: str | None = None,
    ) -> DeliveryReceipt:
        """Deliver *decision* to the task awaiting *approval_id*.

        When *token* is given (a direct strike on the callback address) it must
        match the registered address.  A missing, consumed, expired, or
        mismatched record yields a ``STALE`` receipt instead of an exception.
        """
        require_approval_id(approval_id)
        with otel_tracing.trace_span(
            "approval.deliver", attributes={"approval_relay.approval_id": approval_id}
        ) as result_attrs:
            if token is None:
                record = self._webhooks.resolve(approval_id)
            else:
                record = self._webhooks.matches(approval_id, token)
            if record is None:
                _log.warning("Stale or duplicate callback for approval %s ignored", approval_id)
                result_attrs["approval_relay.delivery"] = str(DeliveryStatus.STALE)
                return DeliveryReceipt(approval_id, DeliveryStatus.STALE, decision)

            try:
                self._host.deliver(approval_id, decision.to_wire())
            except StaleCallbackError:
                # Clicked before the awaiting task was scheduled.
                _log.warning("No awaiting task yet for approval %s; callback ignored", approval_id)
                result_attrs["approval_relay.delivery"] = str(DeliveryStatus.STALE)
                return DeliveryReceipt(approval_id, DeliveryStatus.STALE, decision)
            result_attrs["approval_relay.delivery"] = str(DeliveryStatus.DELIVERED)
        _log.info("Delivered decision for approval %s (approved=%s)", approval_id, decision.approved)
        return DeliveryReceipt(approval_id, DeliveryStatus.DELIVERED, decision)
