"""Reconciles one ScanConfig across all scanning capabilities."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from clusterscan.controllers.admission import AdmissionHandler
from clusterscan.controllers.base import (CapabilityHandler, ReconcileContext,
                                          base_labels)
from clusterscan.controllers.containers import ContainerImageHandler
from clusterscan.controllers.k8s_resources import K8sResourcesHandler
from clusterscan.controllers.nodes import NodeScanHandler
from clusterscan.controllers.scan_api import ScanAPIHandler
from clusterscan.core.config import Settings
from clusterscan.core.deadline import Deadline
from clusterscan.core.exceptions import ObjectNotFound
from clusterscan.core.logging import get_logger_with_context, log_event
from clusterscan.k8s.apply import ResourceApplier
from clusterscan.k8s.client import KubeClient
from clusterscan.k8s.scheme import TypeRegistry, default_registry
from clusterscan.models.scan_config import (API_VERSION, OPERATOR_CONFIG_KIND,
                                            ConditionStatus, OperatorConfig,
                                            ScanConfig, ScanConfigStatus)
from clusterscan.services.conditions import conditions_equal
from clusterscan.services.image_cache import ContainerImageResolver


@dataclass
class ReconcileResult:
    status: Dict[str, Any]
    changed: bool


class ScanConfigReconciler:
    """Runs every capability handler for a ScanConfig and collects its status."""

    def __init__(
        self,
        kube: KubeClient,
        images: ContainerImageResolver,
        settings: Settings,
        registry: Optional[TypeRegistry] = None,
        cert_providers: Optional[Dict] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.kube = kube
        self.images = images
        self.settings = settings
        self.registry = registry or default_registry()
        self.cert_providers = cert_providers
        self.now = now

    def handlers(self, ctx: ReconcileContext) -> List[CapabilityHandler]:
        # Admission runs after the scan API so it sees that condition fresh.
        return [
            ScanAPIHandler(ctx),
            K8sResourcesHandler(ctx),
            ContainerImageHandler(ctx),
            NodeScanHandler(ctx),
            AdmissionHandler(ctx, self.cert_providers),
        ]

    def reconcile(self, body: Dict[str, Any]) -> ReconcileResult:
        config = ScanConfig.from_body(body)
        ctx = self._context(config)

        for handler in self.handlers(ctx):
            handler.reconcile()

        status = ScanConfigStatus(conditions=ctx.conditions, pods=self._pod_names(ctx))
        changed = not conditions_equal(config.status.conditions, status.conditions) or (
            sorted(config.status.pods) != status.pods
        )
        log_event(
            ctx.logger, "debug", "reconciled",
            changed=changed, pods=len(status.pods),
            degraded=[c.type for c in status.conditions if c.status == ConditionStatus.TRUE],
        )
        return ReconcileResult(status=status.to_dict(), changed=changed)

    def teardown(self, body: Dict[str, Any]) -> None:
        """Remove everything the ScanConfig created, including unowned objects."""
        config = ScanConfig.from_body(body)
        config.deleting = True
        ctx = self._context(config)
        for handler in reversed(self.handlers(ctx)):
            handler.down()

    def operator_config(self, kube: KubeClient) -> OperatorConfig:
        try:
            obj = kube.get(API_VERSION, OPERATOR_CONFIG_KIND, self.settings.operator_config_name)
        except ObjectNotFound:
            obj = None
        return OperatorConfig.model_validate(dict((obj or {}).get("spec") or {}))

    def _context(self, config: ScanConfig) -> ReconcileContext:
        kube = self.kube.with_deadline(Deadline.after(self.settings.reconcile_timeout))
        logger = get_logger_with_context(
            "clusterscan.reconciler", scan_config=f"{config.namespace}/{config.name}"
        )
        skip = self.settings.skip_container_resolution or self.operator_config(kube).skip_container_resolution
        return ReconcileContext(
            kube=kube,
            applier=ResourceApplier(kube, self.registry, self.settings.field_manager, logger=logger),
            config=config,
            images=self.images,
            settings=self.settings,
            skip_resolve=skip,
            conditions=list(config.status.conditions),
            logger=logger,
            now=self.now,
        )

    @staticmethod
    def _pod_names(ctx: ReconcileContext) -> List[str]:
        if ctx.config.deleting:
            return []
        return sorted(p["metadata"]["name"] for p in ctx.list_pods(base_labels(ctx.config)))
