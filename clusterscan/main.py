"""
clusterscan operator entrypoint.

Wires the reconciliation engine into kopf: ScanConfig create/update/resume
events and a periodic resync all run the same reconcile, and status is only
patched when it changed.
"""

import logging
import threading
from datetime import timedelta
from typing import Any, Dict

import kopf
from prometheus_client import start_http_server

from clusterscan.controllers.scan_config import ScanConfigReconciler
from clusterscan.core import metrics
from clusterscan.core.config import get_settings
from clusterscan.core.exceptions import ConfigurationError
from clusterscan.core.logging import get_logger, setup_logging
from clusterscan.k8s.client import DynamicKubeClient, load_kube_config
from clusterscan.models.scan_config import GROUP, PLURAL, VERSION
from clusterscan.services.credentials import credential_chain_for, default_chain
from clusterscan.services.image_cache import ContainerImageResolver, ImageCache
from clusterscan.services.registry import RegistryClient

settings = get_settings()
logger = get_logger("clusterscan-operator")


def build_reconciler() -> ScanConfigReconciler:
    """Create the reconciler and its collaborators from settings."""
    kube = DynamicKubeClient(request_timeout=settings.request_timeout)
    registry = RegistryClient(
        credentials_for=lambda host: credential_chain_for(host, default_chain(settings.docker_config_path)),
        timeout=settings.registry_timeout,
    )
    cache = ImageCache(registry.resolve_digest, refresh_period=timedelta(hours=settings.image_refresh_hours))
    images = ContainerImageResolver(
        cache,
        scanner_image=settings.scanner_image,
        scanner_tag=settings.scanner_tag,
        operator_image=settings.operator_image,
        operator_tag=settings.operator_tag,
    )
    return ScanConfigReconciler(kube, images, settings)


def _reconcile(memo: kopf.Memo, body: Dict[str, Any], patch: kopf.Patch, name: str, namespace: str):
    # memo is per object; timers and change handlers share this lock
    lock = memo.setdefault("reconcile_lock", threading.Lock())
    try:
        with lock:
            result = memo.reconciler.reconcile(body)
    except ConfigurationError as e:
        metrics.reconcile_errors.labels(error_type="configuration").inc()
        raise kopf.PermanentError(f"ScanConfig {namespace}/{name} is invalid: {e}")
    except Exception as e:
        metrics.reconcile_errors.labels(error_type=type(e).__name__).inc()
        logger.error(f"Reconcile of {namespace}/{name} failed: {e}")
        raise kopf.TemporaryError(str(e), delay=settings.retry_delay)

    if result.changed:
        logger.info(f"Status of ScanConfig {namespace}/{name} changed")
        patch.status["conditions"] = result.status["conditions"]
        patch.status["pods"] = result.status["pods"]


# ============================================================================
# KOPF HANDLERS
# ============================================================================


@kopf.on.resume(GROUP, VERSION, PLURAL)
@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL, field="spec")
def scan_config_changed(body, patch, name, namespace, memo: kopf.Memo, **_):
    """Handle ScanConfig creation, spec updates and operator restarts"""
    logger.info(f"ScanConfig {namespace}/{name} changed")
    _reconcile(memo, body, patch, name, namespace)


@kopf.timer(GROUP, VERSION, PLURAL, interval=settings.resync_interval, initial_delay=30, idle=10)
def periodic_resync(body, patch, name, namespace, memo: kopf.Memo, **_):
    """Pick up node changes and workload health between spec changes"""
    _reconcile(memo, body, patch, name, namespace)


@kopf.on.delete(GROUP, VERSION, PLURAL)
def scan_config_deleted(body, name, namespace, memo: kopf.Memo, **_):
    """Remove cluster-scoped objects that owner references cannot collect"""
    logger.info(f"ScanConfig {namespace}/{name} deleted")
    try:
        memo.reconciler.teardown(body)
    except Exception as e:
        metrics.reconcile_errors.labels(error_type=type(e).__name__).inc()
        raise kopf.TemporaryError(f"teardown failed: {e}", delay=settings.retry_delay)


# ============================================================================
# STARTUP AND SHUTDOWN
# ============================================================================


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_):
    """Configure kopf settings"""
    settings.posting.level = logging.WARNING
    settings.watching.server_timeout = 300
    settings.watching.client_timeout = 310
    settings.watching.connect_timeout = 10
    settings.persistence.finalizer = "clusterscan.io/finalizer"
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix="clusterscan.io")
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix="clusterscan.io", key="last-handled-configuration"
    )
    settings.execution.max_workers = 4
    settings.batching.worker_limit = 4


@kopf.on.startup()
def startup_handler(memo: kopf.Memo, **_):
    """Startup tasks"""
    setup_logging(settings)
    logger.info("clusterscan operator starting up")

    load_kube_config()
    memo.reconciler = build_reconciler()

    start_http_server(settings.metrics_port)
    logger.info(f"Metrics served on :{settings.metrics_port}")


@kopf.on.cleanup()
def cleanup_handler(memo: kopf.Memo, **_):
    logger.info("clusterscan operator shutting down")


@kopf.on.probe(id="imageCache")
def image_cache_probe(memo: kopf.Memo, **_):
    reconciler = getattr(memo, "reconciler", None)
    if reconciler is None:
        return 0
    return len(reconciler.images.cache)


# ============================================================================
# MAIN
# ============================================================================


def run():
    kopf.run(
        clusterwide=not settings.namespaces,
        namespaces=settings.namespaces,
        liveness_endpoint=settings.liveness_endpoint,
    )


if __name__ == "__main__":
    run()
