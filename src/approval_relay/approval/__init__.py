"""Approval protocol: orchestration, callback ingress, and result polling."""
