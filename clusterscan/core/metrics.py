"""Prometheus metrics for the operator."""

from prometheus_client import Counter, Gauge, Histogram

reconcile_duration = Histogram(
    "clusterscan_reconcile_duration_seconds",
    "Time spent reconciling a capability",
    ["capability"],
)

reconcile_errors = Counter(
    "clusterscan_reconcile_errors_total",
    "Total number of failed reconciles",
    ["error_type"],
)

apply_operations = Counter(
    "clusterscan_apply_operations_total",
    "Total number of apply operations",
    ["kind", "outcome"],
)

garbage_collected = Counter(
    "clusterscan_garbage_collected_total",
    "Objects deleted because their node or capability is gone",
    ["kind"],
)

image_resolutions = Counter(
    "clusterscan_image_resolutions_total",
    "Image digest resolutions",
    ["result"],
)

managed_nodes = Gauge(
    "clusterscan_managed_nodes", "Nodes with a scan resource set", ["scan_config"]
)
