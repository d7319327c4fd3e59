"""Tests for the OpenTelemetry tracing helpers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from approval_relay.infra import otel_tracing


def test_trace_span_yields_mutable_result_attrs() -> None:
    with otel_tracing.trace_span("approval.test", attributes={"k": "v"}) as result_attrs:
        result_attrs["approval_relay.state"] = "awaiting"
    assert result_attrs == {"approval_relay.state": "awaiting"}


def test_trace_span_propagates_exceptions() -> None:
    with pytest.raises(ValueError, match="boom"), otel_tracing.trace_span("approval.test"):
        raise ValueError("boom")


def test_sdk_skipped_when_endpoint_absent(monkeypatch: pytest.MonkeyPatch) -> None:
    """No tracer provider is installed when the exporter endpoint is missing."""
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    with patch("approval_relay.infra.otel_tracing.trace.set_tracer_provider") as mock_set:
        otel_tracing._try_configure_sdk()
    mock_set.assert_not_called()


def test_configure_runs_once(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(otel_tracing, "_configured", False)
    with patch.object(otel_tracing, "_try_configure_sdk") as mock_sdk:
        otel_tracing.configure()
        otel_tracing.configure()
    mock_sdk.assert_called_once()
