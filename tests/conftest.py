"""Shared test fixtures for approval_relay."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from approval_relay.approval.ingress import CallbackIngress
from approval_relay.approval.orchestrator import ApprovalOrchestrator
from approval_relay.config import RelayConfig, SinkKind
from approval_relay.approval.orchestrator import CALLBACK_EXPIRED_CAUSE
from approval_relay.errors import ApprovalDeadlineError, SendError, StaleCallbackError
from approval_relay.models import ApprovalRequest, Decision
from approval_relay.runtime import Runtime, reset_runtime, set_runtime
from approval_relay.store.kv_store import TTLStore
from approval_relay.store.results import ApprovalResultStore
from approval_relay.store.webhooks import WebhookRegistry

_PUBLIC_URL = "http://relay.test"
_WEBHOOK_TTL_SECONDS = 3600
_RESULT_TTL_SECONDS = 24 * 3600
_START_EPOCH = 1_700_000_000.0


class FakeClock:
    """Settable epoch-seconds clock injected into stores instead of sleeping."""

    def __init__(self, now: float = _START_EPOCH) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentNotification:
    request: ApprovalRequest
    approval_id: str
    callback_address: str


@dataclass
class RecordingSink:
    """Sink that accepts every request and remembers it."""

    sent: list[SentNotification] = field(default_factory=list)

    def send(self, request: ApprovalRequest, approval_id: str, callback_address: str) -> None:
        self.sent.append(SentNotification(request, approval_id, callback_address))

    @property
    def last(self) -> SentNotification:
        return self.sent[-1]


class FailingSink:
    """Sink whose channel is down."""

    def send(self, request: ApprovalRequest, approval_id: str, callback_address: str) -> None:
        del request, callback_address
        raise SendError(f"channel unreachable for {approval_id}")


class FakeTaskHandle:
    """One awaiting task that consumes exactly one mailbox message when stepped."""

    def __init__(
        self,
        host: FakeTaskHost,
        approval_id: str,
        session_id: str,
        request: ApprovalRequest,
    ) -> None:
        self._host = host
        self.approval_id = approval_id
        self.session_id = session_id
        self.request_data = request.to_wire()
        self.task_id = f"approval-{approval_id}"
        self.finished = False
        self.decision: Decision | None = None
        self.error: Exception | None = None

    def step(self) -> Decision | None:
        """Run the task until it blocks again; rebuilds the request from persisted args."""
        if self.finished:
            return self.decision
        assert self._host.orchestrator is not None
        messages = self._host.mailbox[self.approval_id]
        if not messages:
            # An empty receive window: give up once the address can no longer deliver.
            if not self._host.orchestrator.callback_live(self.approval_id):
                self.finished = True
                self._host.orchestrator.fail(
                    self.approval_id,
                    self.session_id,
                    ApprovalRequest.model_validate(self.request_data),
                    CALLBACK_EXPIRED_CAUSE,
                )
                self.error = ApprovalDeadlineError(CALLBACK_EXPIRED_CAUSE)
            return None
        payload = messages.pop(0)
        self.finished = True
        try:
            self.decision = self._host.orchestrator.complete(
                self.approval_id,
                self.session_id,
                ApprovalRequest.model_validate(self.request_data),
                payload,
            )
        except Exception as exc:
            self.error = exc
        return self.decision

    def wait(self, timeout: float | None = None) -> Decision:
        del timeout
        decision = self.step()
        if self.error is not None:
            raise self.error
        if decision is None:
            raise TimeoutError(f"Approval task {self.task_id} still pending.")
        return decision


class FakeTaskHost:
    """In-process task host with mailbox semantics like ``DBOS.send``/``DBOS.recv``.

    Like ``DBOS.send``, delivering to an approval with no scheduled task is
    rejected; each task consumes only the first message addressed to it.
    """

    def __init__(self) -> None:
        self.mailbox: defaultdict[str, list[dict[str, Any]]] = defaultdict(list)
        self.tasks: dict[str, FakeTaskHandle] = {}
        self.orchestrator: ApprovalOrchestrator | None = None
        self.fail_schedule = False
        self.reviewer: AutoReviewSink | None = None

    def schedule(self, approval_id: str, session_id: str, request: ApprovalRequest) -> FakeTaskHandle:
        if self.fail_schedule:
            raise RuntimeError("task host unavailable")
        if approval_id not in self.tasks:
            self.tasks[approval_id] = FakeTaskHandle(self, approval_id, session_id, request)
            if self.reviewer is not None:
                self.reviewer.answer(approval_id)
        return self.tasks[approval_id]

    def deliver(self, approval_id: str, payload: dict[str, Any]) -> None:
        if approval_id not in self.tasks:
            raise StaleCallbackError(f"No awaiting task for approval {approval_id}")
        self.mailbox[approval_id].append(payload)

    def run_all(self) -> None:
        for task in list(self.tasks.values()):
            task.step()


class AutoReviewSink(RecordingSink):
    """Sink whose reviewer answers through the ingress as soon as the task exists."""

    def __init__(self, decision: Decision) -> None:
        super().__init__()
        self.decision = decision
        self.ingress: CallbackIngress | None = None

    def answer(self, approval_id: str) -> None:
        assert self.ingress is not None
        self.ingress.deliver(approval_id, self.decision)


@dataclass
class Relay:
    """Fully wired relay over temp stores, a fake host, and a recording sink."""

    webhooks: WebhookRegistry
    results: ApprovalResultStore
    sink: RecordingSink
    host: FakeTaskHost
    orchestrator: ApprovalOrchestrator
    ingress: CallbackIngress
    clock: FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def webhooks(tmp_path: Path, clock: FakeClock) -> WebhookRegistry:
    """WebhookRegistry backed by a temporary directory."""
    store = TTLStore(tmp_path / "webhooks", ttl_seconds=_WEBHOOK_TTL_SECONDS, clock=clock)
    return WebhookRegistry(store, public_base_url=_PUBLIC_URL)


@pytest.fixture()
def results(tmp_path: Path, clock: FakeClock) -> ApprovalResultStore:
    """ApprovalResultStore backed by a temporary directory."""
    store = TTLStore(tmp_path / "approval-results", ttl_seconds=_RESULT_TTL_SECONDS, clock=clock)
    return ApprovalResultStore(store)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def task_host() -> FakeTaskHost:
    return FakeTaskHost()


def wire_relay(
    webhooks: WebhookRegistry,
    results: ApprovalResultStore,
    sink: Any,
    host: FakeTaskHost,
    clock: FakeClock,
) -> Relay:
    orchestrator = ApprovalOrchestrator(webhooks=webhooks, results=results, sink=sink, host=host)
    host.orchestrator = orchestrator
    ingress = CallbackIngress(webhooks=webhooks, host=host)
    if isinstance(sink, AutoReviewSink):
        sink.ingress = ingress
        host.reviewer = sink
    return Relay(webhooks, results, sink, host, orchestrator, ingress, clock)


@pytest.fixture()
def relay(
    webhooks: WebhookRegistry,
    results: ApprovalResultStore,
    sink: RecordingSink,
    task_host: FakeTaskHost,
    clock: FakeClock,
) -> Relay:
    return wire_relay(webhooks, results, sink, task_host, clock)


@pytest.fixture()
def dragon_request() -> ApprovalRequest:
    return ApprovalRequest(
        situation="wants a dragon",
        context="",
        reason="",
        requested_action="approve dragon",
    )


@pytest.fixture()
def relay_config(tmp_path: Path) -> RelayConfig:
    return RelayConfig(storage_dir=tmp_path, public_base_url=_PUBLIC_URL, sink=SinkKind.LOG)


@pytest.fixture()
def runtime(relay: Relay, relay_config: RelayConfig) -> Iterator[Runtime]:
    """Register a Runtime over the fake relay as the process-wide runtime."""
    rt = Runtime(
        config=relay_config,
        webhooks=relay.webhooks,
        results=relay.results,
        orchestrator=relay.orchestrator,
        ingress=relay.ingress,
    )
    set_runtime(rt)
    yield rt
    reset_runtime()
