"""Kubernetes resources scanning through the scan API."""

from typing import Any, Dict

from clusterscan.controllers.base import (SCAN_API_TOKEN_PATH,
                                          CapabilityHandler, scan_labels)
from clusterscan.controllers.common import (cronjob, default_schedule,
                                            purge_stale_jobs,
                                            restricted_security_context)
from clusterscan.controllers.scan_api import scan_api_url, token_secret_name
from clusterscan.k8s.objects import are_cronjobs_successful
from clusterscan.models.scan_config import ScanConfig
from clusterscan.services.conditions import K8S_RESOURCES_SCANNING

CONTAINER_NAME = "clusterscan-k8s-scan"


def k8s_labels(config: ScanConfig) -> Dict[str, str]:
    return scan_labels(config, "k8s")


def cronjob_name(parent: str) -> str:
    return f"{parent}-k8s-scan"


def k8s_scan_cronjob(config: ScanConfig, image: str) -> Dict[str, Any]:
    pod_spec = {
        "restartPolicy": "OnFailure",
        "automountServiceAccountToken": False,
        "containers": [
            {
                "name": CONTAINER_NAME,
                "image": image,
                "imagePullPolicy": "IfNotPresent",
                "command": ["/clusterscan-operator", "k8s-scan"],
                "args": [
                    "--scan-api-url", scan_api_url(config),
                    "--token-file-path", SCAN_API_TOKEN_PATH,
                    "--timeout", "25",
                ],
                "resources": {
                    "limits": {"cpu": "100m", "memory": "30Mi"},
                    "requests": {"cpu": "50m", "memory": "20Mi"},
                },
                "securityContext": restricted_security_context(),
                "volumeMounts": [{"name": "token", "mountPath": "/etc/scanapi", "readOnly": True}],
            }
        ],
        "volumes": [
            {
                "name": "token",
                "secret": {"secretName": token_secret_name(config.name), "defaultMode": 0o444},
            }
        ],
    }
    return cronjob(
        cronjob_name(config.name),
        config.namespace,
        k8s_labels(config),
        default_schedule(config.spec.kubernetes_resources.schedule, f"{config.name}-k8s"),
        pod_spec,
    )


class K8sResourcesHandler(CapabilityHandler):
    name = "k8s-resources"
    capability = K8S_RESOURCES_SCANNING

    def enabled(self) -> bool:
        return self.config.spec.kubernetes_resources.enable

    def sync(self) -> None:
        labels = k8s_labels(self.config)
        desired = k8s_scan_cronjob(self.config, self.ctx.operator_image())
        outcome = self.ctx.applier.apply(desired, owner=self.config)
        purge_stale_jobs(
            self.ctx.kube, self.ctx.applier, self.ctx.namespace, desired["metadata"]["name"], labels, outcome
        )

        cronjobs = self.ctx.kube.list("batch/v1", "CronJob", self.ctx.namespace, labels=labels)
        self.update_conditions(
            enabled=True,
            degraded=not are_cronjobs_successful(cronjobs),
            pods=self.ctx.list_pods(labels),
        )

    def down(self) -> None:
        self.delete("batch/v1", "CronJob", cronjob_name(self.config.name))
