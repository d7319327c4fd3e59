"""Adapters for durable execution, notification channels, and tracing."""
