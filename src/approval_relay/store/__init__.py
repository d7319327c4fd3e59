"""Persistent TTL-bound stores for webhook records and approval results."""
