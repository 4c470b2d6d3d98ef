"""Container image scanning of the workloads running in the cluster."""

from typing import Any, Dict

import yaml

from clusterscan.controllers.base import (CONFIG_MOUNT_PATH, CapabilityHandler,
                                          scan_labels)
from clusterscan.controllers.common import (config_volume, cronjob,
                                            default_schedule, object_meta,
                                            purge_stale_jobs,
                                            restricted_security_context,
                                            temp_volume)
from clusterscan.k8s.objects import (DEFAULT_SCANNER_RESOURCES,
                                     are_cronjobs_successful,
                                     resources_with_defaults)
from clusterscan.models.scan_config import ScanConfig
from clusterscan.services.conditions import CONTAINER_IMAGE_SCANNING

CONTAINER_NAME = "clusterscan-containers-scan"
DOCKER_CONFIG_PATH = "/etc/opt/clusterscan/docker"


def containers_labels(config: ScanConfig) -> Dict[str, str]:
    return scan_labels(config, "k8s-containers")


def cronjob_name(parent: str) -> str:
    return f"{parent}-containers-scan"


def configmap_name(parent: str) -> str:
    return f"{parent}-containers-inventory"


def inventory(config: ScanConfig, cluster_uid: str) -> str:
    doc = {
        "apiVersion": "v1",
        "kind": "Inventory",
        "metadata": {"name": "k8s-containers-inventory"},
        "spec": {
            "assets": [
                {
                    "id": "k8s-cluster",
                    "name": "k8s-cluster",
                    "connections": [
                        {
                            "type": "k8s",
                            "options": {"namespaces": ""},
                            "discover": {"targets": ["container-images"]},
                        }
                    ],
                    "labels": {"k8s.clusterscan.io/kind": "container-images"},
                    "managedBy": f"clusterscan-operator-{cluster_uid}",
                }
            ]
        },
    }
    return yaml.safe_dump(doc, sort_keys=True)


def inventory_configmap(config: ScanConfig, cluster_uid: str) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": object_meta(configmap_name(config.name), config.namespace, containers_labels(config)),
        "data": {"inventory": inventory(config, cluster_uid)},
    }


def containers_cronjob(config: ScanConfig, image: str) -> Dict[str, Any]:
    spec = config.spec
    args = [
        "scan", "k8s",
        "--config", f"{CONFIG_MOUNT_PATH}/config.yml",
        "--inventory-file", f"{CONFIG_MOUNT_PATH}/inventory.yml",
        "--score-threshold", "0",
    ]
    if spec.containers.workers > 0:
        args += ["--discover-workers", str(spec.containers.workers)]

    mounts = [
        {"name": "config", "mountPath": CONFIG_MOUNT_PATH, "readOnly": True},
        {"name": "temp", "mountPath": "/tmp"},
    ]
    volumes = [
        config_volume("config", spec.creds_secret_ref.name, configmap_name(config.name)),
        temp_volume(),
    ]
    env = [{"name": "CLUSTERSCAN_AUTO_UPDATE", "value": "false"}]

    pull_secret = spec.scanner.private_registries_pull_secret_ref.name
    if pull_secret:
        mounts.append({"name": "pull-secrets", "mountPath": DOCKER_CONFIG_PATH, "readOnly": True})
        volumes.append(
            {
                "name": "pull-secrets",
                "secret": {
                    "secretName": pull_secret,
                    "items": [{"key": ".dockerconfigjson", "path": "config.json"}],
                },
            }
        )
        env.append({"name": "DOCKER_CONFIG", "value": DOCKER_CONFIG_PATH})

    pod_spec = {
        "restartPolicy": "OnFailure",
        "serviceAccountName": spec.scanner.service_account_name,
        "containers": [
            {
                "name": CONTAINER_NAME,
                "image": image,
                "imagePullPolicy": "IfNotPresent",
                "args": args,
                "resources": resources_with_defaults(spec.containers.resources, DEFAULT_SCANNER_RESOURCES),
                "securityContext": restricted_security_context(),
                "volumeMounts": mounts,
                "env": env,
            }
        ],
        "volumes": volumes,
    }
    return cronjob(
        cronjob_name(config.name),
        config.namespace,
        containers_labels(config),
        default_schedule(spec.containers.schedule, f"{config.name}-containers"),
        pod_spec,
    )


class ContainerImageHandler(CapabilityHandler):
    """Schedules the cluster-wide container image scan."""

    name = "containers"
    capability = CONTAINER_IMAGE_SCANNING

    def enabled(self) -> bool:
        return self.config.spec.containers.enable

    def sync(self) -> None:
        applier, labels = self.ctx.applier, containers_labels(self.config)
        image = self.ctx.scanner_image()

        applier.apply(inventory_configmap(self.config, self.ctx.cluster_uid()), owner=self.config)
        desired = containers_cronjob(self.config, image)
        outcome = applier.apply(desired, owner=self.config)
        purge_stale_jobs(
            self.ctx.kube, applier, self.ctx.namespace, desired["metadata"]["name"], labels, outcome
        )

        cronjobs = self.ctx.kube.list("batch/v1", "CronJob", self.ctx.namespace, labels=labels)
        self.update_conditions(
            enabled=True,
            degraded=not are_cronjobs_successful(cronjobs),
            pods=self.ctx.list_pods(labels),
        )

    def down(self) -> None:
        self.delete("batch/v1", "CronJob", cronjob_name(self.config.name))
        self.delete("v1", "ConfigMap", configmap_name(self.config.name))
