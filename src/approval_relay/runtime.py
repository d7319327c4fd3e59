"""Process runtime state: the wired stores, orchestrator, and ingress.

Durable task code (``infra/task_host.py``) runs with nothing but its persisted
arguments, so it reaches the live components through this registry instead
of closures.

Dependencies: approval.ingress, approval.orchestrator, approval.ports, config, store
Wired in: cli.py → main(), infra/task_host.py, server/app.py, server/mcp_server.py
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from approval_relay.approval.ingress import CallbackIngress
from approval_relay.approval.orchestrator import ApprovalOrchestrator
from approval_relay.approval.ports import NotificationSink, TaskHost
from approval_relay.config import RelayConfig
from approval_relay.store.kv_store import SweepReport
from approval_relay.store.results import ApprovalResultStore
from approval_relay.store.webhooks import WebhookRegistry


@dataclass
class Runtime:
    """Initialized relay components shared by HTTP routes, MCP tools, and tasks."""

    config: RelayConfig
    webhooks: WebhookRegistry
    results: ApprovalResultStore
    orchestrator: ApprovalOrchestrator
    ingress: CallbackIngress

    def sweep(self) -> dict[str, SweepReport]:
        """Evict expired records from both stores."""
        return {
            "webhooks": self.webhooks.store.sweep(),
            "results": self.results.store.sweep(),
        }


def build_runtime(
    config: RelayConfig,
    *,
    sink: NotificationSink,
    host: TaskHost,
    blocking_timeout_seconds: float | None = None,
) -> Runtime:
    """Open both stores under ``config.storage_dir`` and wire the components."""
    webhooks = WebhookRegistry.open(
        config.webhooks_dir,
        public_base_url=config.public_base_url,
        ttl_seconds=config.webhook_ttl_seconds,
    )
    results = ApprovalResultStore.open(config.results_dir, ttl_seconds=config.result_ttl_seconds)
    orchestrator = ApprovalOrchestrator(
        webhooks=webhooks,
        results=results,
        sink=sink,
        host=host,
        blocking_timeout_seconds=blocking_timeout_seconds,
    )
    return Runtime(
        config=config,
        webhooks=webhooks,
        results=results,
        orchestrator=orchestrator,
        ingress=CallbackIngress(webhooks=webhooks, host=host),
    )


class RuntimeRegistry:
    """Thread-safe holder for the process-wide :class:`Runtime`."""

    def __init__(self) -> None:
        self._runtime: Runtime | None = None
        self._lock = threading.Lock()

    def set(self, runtime: Runtime) -> None:
        with self._lock:
            self._runtime = runtime

    def get(self) -> Runtime:
        with self._lock:
            runtime = self._runtime
        if runtime is None:
            raise RuntimeError("Runtime not initialised. Start the relay via main().")
        return runtime

    def reset(self) -> None:
        """Clear the registry (useful for testing)."""
        with self._lock:
            self._runtime = None


_runtime_registry = RuntimeRegistry()


def set_runtime(runtime: Runtime) -> None:
    _runtime_registry.set(runtime)


def get_runtime() -> Runtime:
    """Return the runtime registered by :func:`set_runtime`."""
    return _runtime_registry.get()


def reset_runtime() -> None:
    _runtime_registry.reset()
