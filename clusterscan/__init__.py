"""Kubernetes scanning operator: reconciliation and status engine."""

__version__ = "0.4.0"
