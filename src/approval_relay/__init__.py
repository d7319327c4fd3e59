"""Durable correlation of human approval decisions with long-running callers."""
