"""Node scanning: one inventory and one scan workload per cluster node."""

from typing import Any, Dict, List

import yaml

from clusterscan.controllers.base import (CONFIG_MOUNT_PATH, CapabilityHandler,
                                          ReconcileContext, scan_labels)
from clusterscan.controllers.common import (config_volume, cronjob,
                                            default_schedule, object_meta,
                                            purge_stale_jobs,
                                            restricted_security_context,
                                            temp_volume)
from clusterscan.core import metrics
from clusterscan.k8s.naming import node_resource_name
from clusterscan.k8s.objects import (DEFAULT_NODE_SCANNING_RESOURCES,
                                     are_cronjobs_successful,
                                     resources_with_defaults,
                                     taints_to_tolerations)
from clusterscan.models.scan_config import NodeScanStyle, ScanConfig
from clusterscan.services.conditions import NODE_SCANNING
from clusterscan.services.fanout import NodeFanout

WORKLOAD_NAME_BASE = "-node-"
INVENTORY_CONFIGMAP_BASE = "-node-inventory-"
CONTAINER_NAME = "scanner"

CRONJOB = ("batch/v1", "CronJob")
DEPLOYMENT = ("apps/v1", "Deployment")
CONFIGMAP = ("v1", "ConfigMap")


def node_labels(config: ScanConfig) -> Dict[str, str]:
    return scan_labels(config, "nodes")


def workload_name(parent: str, node_name: str) -> str:
    return node_resource_name(parent, WORKLOAD_NAME_BASE, node_name)


def inventory_configmap_name(parent: str, node_name: str) -> str:
    return node_resource_name(parent, INVENTORY_CONFIGMAP_BASE, node_name)


def inventory(node: Dict[str, Any], config: ScanConfig, cluster_uid: str) -> str:
    """Scanner inventory for a single node, as YAML."""
    node_name = node["metadata"]["name"]
    node_uid = node["metadata"].get("uid", "")
    doc = {
        "apiVersion": "v1",
        "kind": "Inventory",
        "metadata": {"name": f"node-{node_name}-inventory"},
        "spec": {
            "assets": [
                {
                    "id": "host",
                    "name": node_name,
                    "connections": [{"type": "filesystem", "host": "/mnt/host"}],
                    "platformIds": [
                        f"//platformid.clusterscan.io/runtime/k8s/uid/{cluster_uid}/node/{node_uid}"
                    ],
                    "labels": {"k8s.clusterscan.io/kind": "node", "k8s.clusterscan.io/name": node_name},
                    "managedBy": f"clusterscan-operator-{cluster_uid}",
                }
            ]
        },
    }
    return yaml.safe_dump(doc, sort_keys=True)


def inventory_configmap(node: Dict[str, Any], config: ScanConfig, cluster_uid: str) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": object_meta(
            inventory_configmap_name(config.name, node["metadata"]["name"]),
            config.namespace,
            node_labels(config),
        ),
        "data": {"inventory": inventory(node, config, cluster_uid)},
    }


def node_pod_spec(
    node: Dict[str, Any], config: ScanConfig, image: str, args: List[str], is_openshift: bool, restart_policy: str
) -> Dict[str, Any]:
    node_name = node["metadata"]["name"]
    spec: Dict[str, Any] = {
        "nodeName": node_name,
        "restartPolicy": restart_policy,
        "automountServiceAccountToken": False,
        "tolerations": taints_to_tolerations((node.get("spec") or {}).get("taints")),
        "containers": [
            {
                "name": CONTAINER_NAME,
                "image": image,
                "imagePullPolicy": "IfNotPresent",
                "args": args,
                "resources": resources_with_defaults(
                    config.spec.nodes.resources, DEFAULT_NODE_SCANNING_RESOURCES
                ),
                # host filesystem scans run as root
                "securityContext": restricted_security_context(privileged=is_openshift, run_as_root=True),
                "volumeMounts": [
                    {"name": "root", "mountPath": "/mnt/host/", "readOnly": True},
                    {"name": "config", "mountPath": CONFIG_MOUNT_PATH, "readOnly": True},
                    {"name": "temp", "mountPath": "/tmp"},
                ],
                "env": [{"name": "CLUSTERSCAN_AUTO_UPDATE", "value": "false"}],
            }
        ],
        "volumes": [
            {"name": "root", "hostPath": {"path": "/"}},
            config_volume(
                "config",
                config.spec.creds_secret_ref.name,
                inventory_configmap_name(config.name, node_name),
            ),
            temp_volume(),
        ],
    }
    if config.spec.nodes.priority_class_name:
        spec["priorityClassName"] = config.spec.nodes.priority_class_name
    return spec


def scan_args(serve: bool) -> List[str]:
    args = ["serve", "--timer", "60"] if serve else ["scan", "local"]
    return args + [
        "--config", f"{CONFIG_MOUNT_PATH}/config.yml",
        "--inventory-file", f"{CONFIG_MOUNT_PATH}/inventory.yml",
        "--score-threshold", "0",
    ]


def node_cronjob(node: Dict[str, Any], config: ScanConfig, image: str, is_openshift: bool) -> Dict[str, Any]:
    return cronjob(
        workload_name(config.name, node["metadata"]["name"]),
        config.namespace,
        node_labels(config),
        default_schedule(config.spec.nodes.schedule, config.name),
        node_pod_spec(node, config, image, scan_args(serve=False), is_openshift, "OnFailure"),
    )


def node_deployment(node: Dict[str, Any], config: ScanConfig, image: str, is_openshift: bool) -> Dict[str, Any]:
    name = workload_name(config.name, node["metadata"]["name"])
    labels = node_labels(config)
    selector = dict(labels, node=name)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": object_meta(name, config.namespace, labels),
        "spec": {
            "replicas": 1,
            "strategy": {"type": "Recreate"},
            "selector": {"matchLabels": selector},
            "template": {
                "metadata": {"labels": selector},
                "spec": node_pod_spec(node, config, image, scan_args(serve=True), is_openshift, "Always"),
            },
        },
    }


class NodeScanHandler(CapabilityHandler):
    """Keeps per-node scan workloads in line with the cluster's nodes."""

    name = "nodes"
    capability = NODE_SCANNING

    def __init__(self, ctx: ReconcileContext):
        super().__init__(ctx)
        style = self.config.spec.nodes.style
        workload, other = (CRONJOB, DEPLOYMENT) if style == NodeScanStyle.CRONJOB else (DEPLOYMENT, CRONJOB)
        self.style = style
        self.workload_kind = workload
        self.fanout = NodeFanout(
            ctx.applier,
            ctx.kube,
            owner=self.config,
            namespace=ctx.namespace,
            selector=node_labels(self.config),
            managed_kinds=[CONFIGMAP, workload],
            teardown_kinds=[other],
            logger=ctx.logger,
        )

    def enabled(self) -> bool:
        return self.config.spec.nodes.enable

    def sync(self) -> None:
        image = self.ctx.scanner_image()
        cluster_uid = self.ctx.cluster_uid()
        is_openshift = self.ctx.settings.is_openshift
        nodes = self.ctx.kube.list("v1", "Node")

        def build(node):
            if self.style == NodeScanStyle.CRONJOB:
                workload = node_cronjob(node, self.config, image, is_openshift)
            else:
                workload = node_deployment(node, self.config, image, is_openshift)
            return [inventory_configmap(node, self.config, cluster_uid), workload]

        result = self.fanout.sync(nodes, build)
        metrics.managed_nodes.labels(scan_config=f"{self.config.namespace}/{self.config.name}").set(len(nodes))

        if self.style == NodeScanStyle.CRONJOB:
            for applied in result.applied.values():
                for desired, outcome in applied:
                    if desired["kind"] == "CronJob":
                        purge_stale_jobs(
                            self.ctx.kube, self.ctx.applier, self.ctx.namespace,
                            desired["metadata"]["name"], node_labels(self.config), outcome,
                        )

        self.update_conditions(
            enabled=True,
            degraded=self._degraded(),
            pods=self.ctx.list_pods(node_labels(self.config)),
        )

    def _degraded(self) -> bool:
        api_version, kind = self.workload_kind
        workloads = self.ctx.kube.list(api_version, kind, self.ctx.namespace, labels=node_labels(self.config))
        if kind == "CronJob":
            return not are_cronjobs_successful(workloads)
        return any((w.get("status") or {}).get("unavailableReplicas") for w in workloads)

    def down(self) -> None:
        self.fanout.teardown()
        metrics.managed_nodes.labels(scan_config=f"{self.config.namespace}/{self.config.name}").set(0)
