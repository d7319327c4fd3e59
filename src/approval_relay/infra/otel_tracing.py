"""OpenTelemetry tracing helpers for approval_relay.

The API package is always installed; the SDK and OTLP exporter are configured
only when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set and the ``otel`` extra is
present.  Without an SDK the global tracer is the API's no-op tracer.

Dependencies: (none, leaf module)
Wired in: cli.py → main(), approval/orchestrator.py, approval/ingress.py
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

_log = logging.getLogger(__name__)

TRACER_NAME = "approval_relay"
_SERVICE_NAME_DEFAULT = "approval-relay"
_configured = False


def _try_configure_sdk() -> None:
    """Bootstrap the OTEL SDK if the exporter endpoint is configured."""
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ModuleNotFoundError:
        _log.warning(
            "opentelemetry SDK/exporter packages missing; tracing disabled. "
            "Install with: pip install 'approval-relay[otel]'"
        )
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", _SERVICE_NAME_DEFAULT)
    resource = Resource.create({"service.name": service_name})
    tracer_provider = TracerProvider(resource=resource)
    # Respect standard OTEL env var; default insecure for local dev.
    insecure = os.getenv("OTEL_EXPORTER_OTLP_INSECURE", "true").lower() == "true"
    exporter = OTLPSpanExporter(endpoint=endpoint, insecure=insecure)
    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(tracer_provider)
    _log.info("OTEL tracing enabled → %s (service=%s)", endpoint, service_name)


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, str | int | float | bool] | None = None,
) -> Generator[dict[str, Any], None, None]:
    """Open a span named *name*.

    Yields a mutable dict; callers can add result attributes that are set on
    the span before it closes.
    """
    result_attrs: dict[str, Any] = {}
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        yield result_attrs
        for key, value in result_attrs.items():
            span.set_attribute(key, value)


def configure() -> None:
    """One-shot SDK bootstrap, safe to call multiple times."""
    global _configured
    if _configured:
        return
    _configured = True
    _try_configure_sdk()
