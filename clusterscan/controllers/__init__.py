"""Capability controllers and the ScanConfig reconciler."""

from .scan_config import ReconcileResult, ScanConfigReconciler

__all__ = ["ReconcileResult", "ScanConfigReconciler"]
