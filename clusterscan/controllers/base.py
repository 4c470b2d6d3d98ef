"""Shared plumbing for capability handlers."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from clusterscan.core import metrics
from clusterscan.core.config import Settings
from clusterscan.k8s.apply import ResourceApplier
from clusterscan.k8s.client import KubeClient
from clusterscan.models.scan_config import Condition, ScanConfig
from clusterscan.services.conditions import (CapabilityConditions,
                                             update_capability_condition)
from clusterscan.services.image_cache import ContainerImageResolver

APP_LABEL = "clusterscan"
CR_LABEL = "clusterscan_cr"

CONFIG_MOUNT_PATH = "/etc/opt/clusterscan"
SCAN_API_TOKEN_PATH = "/etc/scanapi/token"


def base_labels(config: ScanConfig) -> Dict[str, str]:
    """Labels carried by everything created for config."""
    return {"app": APP_LABEL, CR_LABEL: config.name}


def scan_labels(config: ScanConfig, scan: str) -> Dict[str, str]:
    labels = base_labels(config)
    labels["scan"] = scan
    return labels


@dataclass
class ReconcileContext:
    """State shared by the handlers during one reconcile."""

    kube: KubeClient
    applier: ResourceApplier
    config: ScanConfig
    images: ContainerImageResolver
    settings: Settings
    skip_resolve: bool
    conditions: List[Condition]
    logger: logging.Logger
    now: Optional[Callable[[], datetime]] = None
    _cluster_uid: Optional[str] = field(default=None, repr=False)

    @property
    def namespace(self) -> str:
        return self.config.namespace

    def cluster_uid(self) -> str:
        """UID of the kube-system namespace, used as the cluster identity."""
        if self._cluster_uid is None:
            ns = self.kube.get("v1", "Namespace", "kube-system")
            self._cluster_uid = ((ns or {}).get("metadata") or {}).get("uid", "")
        return self._cluster_uid

    def scanner_image(self) -> str:
        return self.images.scanner_image(self.config.spec.scanner.image, self.skip_resolve)

    def operator_image(self) -> str:
        return self.images.operator_image(None, self.skip_resolve)

    def list_pods(self, labels: Dict[str, str]) -> List[Dict[str, Any]]:
        return self.kube.list("v1", "Pod", self.namespace, labels=labels)


class CapabilityHandler:
    """One capability: deploy its workloads when enabled, remove them when not."""

    name = ""
    capability: CapabilityConditions

    def __init__(self, ctx: ReconcileContext):
        self.ctx = ctx
        self.config = ctx.config
        self.logger = ctx.logger

    def enabled(self) -> bool:
        raise NotImplementedError

    def reconcile(self) -> None:
        with metrics.reconcile_duration.labels(capability=self.name).time():
            if self.config.deleting or not self.enabled():
                self.down()
                self.update_conditions(enabled=False, degraded=False)
                return
            self.sync()

    def sync(self) -> None:
        raise NotImplementedError

    def down(self) -> None:
        raise NotImplementedError

    def update_conditions(self, enabled: bool, degraded: bool, pods=(), degraded_message=None, dependency=None):
        self.ctx.conditions = update_capability_condition(
            self.ctx.conditions,
            self.capability,
            enabled=enabled,
            degraded=degraded,
            pods=pods,
            degraded_message=degraded_message,
            dependency=dependency,
            now=self.ctx.now() if self.ctx.now else None,
        )

    def delete(self, api_version: str, kind: str, name: str, namespace: Optional[str] = "") -> bool:
        if namespace == "":
            namespace = self.ctx.namespace
        return self.ctx.applier.delete_if_exists(
            api_version, kind, name, namespace, propagation_policy="Background"
        )
