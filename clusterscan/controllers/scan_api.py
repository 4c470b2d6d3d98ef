"""Scan API: the in-cluster service the webhook and resource scans call."""

import re
import secrets
from typing import Any, Dict, Optional

from clusterscan.controllers.base import (CONFIG_MOUNT_PATH,
                                          SCAN_API_TOKEN_PATH,
                                          CapabilityHandler, scan_labels)
from clusterscan.controllers.common import (config_volume, deployment_degraded,
                                            object_meta,
                                            restricted_security_context,
                                            temp_volume)
from clusterscan.k8s.objects import (DEFAULT_SCANNER_RESOURCES,
                                     resources_with_defaults)
from clusterscan.models.scan_config import AdmissionMode, ScanConfig
from clusterscan.services.conditions import SCAN_API

NAME_SUFFIX = "-scan-api"
TOKEN_SUFFIX = "-scan-api-token"
PORT = 8080
CONTAINER_NAME = "scanner"

_SERVICE_ACCOUNT_MISSING = re.compile(r"serviceaccount \"[^\"]+\" not found")


def scan_api_labels(config: ScanConfig) -> Dict[str, str]:
    return scan_labels(config, "scan-api")


def deployment_name(parent: str) -> str:
    return parent + NAME_SUFFIX


def service_name(parent: str) -> str:
    return parent + NAME_SUFFIX


def token_secret_name(parent: str) -> str:
    return parent + TOKEN_SUFFIX


def scan_api_url(config: ScanConfig) -> str:
    return f"http://{service_name(config.name)}.{config.namespace}.svc:{PORT}"


def token_secret(config: ScanConfig) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": object_meta(token_secret_name(config.name), config.namespace, scan_api_labels(config)),
        "stringData": {"token": secrets.token_hex(32)},
    }


def scan_api_deployment(config: ScanConfig, image: str) -> Dict[str, Any]:
    labels = scan_api_labels(config)
    scanner = config.spec.scanner
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": object_meta(deployment_name(config.name), config.namespace, labels),
        "spec": {
            "replicas": scanner.replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "serviceAccountName": scanner.service_account_name,
                    "containers": [
                        {
                            "name": CONTAINER_NAME,
                            "image": image,
                            "imagePullPolicy": "IfNotPresent",
                            "args": [
                                "serve-api",
                                "--address", "0.0.0.0",
                                "--config", f"{CONFIG_MOUNT_PATH}/config.yml",
                                "--token-file-path", SCAN_API_TOKEN_PATH,
                            ],
                            "ports": [{"containerPort": PORT, "protocol": "TCP"}],
                            "readinessProbe": {
                                "httpGet": {"path": "/Scan/HealthCheck", "port": PORT},
                                "initialDelaySeconds": 10,
                                "periodSeconds": 10,
                            },
                            "livenessProbe": {
                                "httpGet": {"path": "/Scan/HealthCheck", "port": PORT},
                                "initialDelaySeconds": 15,
                                "periodSeconds": 20,
                            },
                            "resources": resources_with_defaults(scanner.resources, DEFAULT_SCANNER_RESOURCES),
                            "securityContext": restricted_security_context(),
                            "volumeMounts": [
                                {"name": "config", "mountPath": CONFIG_MOUNT_PATH, "readOnly": True},
                                {"name": "token", "mountPath": "/etc/scanapi", "readOnly": True},
                                {"name": "temp", "mountPath": "/tmp"},
                            ],
                            "env": [{"name": "CLUSTERSCAN_AUTO_UPDATE", "value": "false"}],
                        }
                    ],
                    "volumes": [
                        config_volume("config", config.spec.creds_secret_ref.name),
                        {"name": "token", "secret": {"secretName": token_secret_name(config.name)}},
                        temp_volume(),
                    ],
                },
            },
        },
    }


def scan_api_service(config: ScanConfig) -> Dict[str, Any]:
    labels = scan_api_labels(config)
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": object_meta(service_name(config.name), config.namespace, labels),
        "spec": {
            "type": "ClusterIP",
            "selector": labels,
            "ports": [{"name": "http", "port": PORT, "targetPort": PORT, "protocol": "TCP"}],
        },
    }


def service_account_message(deployment: Optional[Dict[str, Any]]) -> Optional[str]:
    """Deployment condition message naming a missing service account, if any."""
    for condition in ((deployment or {}).get("status") or {}).get("conditions") or []:
        match = _SERVICE_ACCOUNT_MISSING.search(condition.get("message", ""))
        if match:
            return match.group(0)
    return None


class ScanAPIHandler(CapabilityHandler):
    name = "scan-api"
    capability = SCAN_API

    def enabled(self) -> bool:
        spec = self.config.spec
        return spec.kubernetes_resources.enable or spec.admission.enable

    def sync(self) -> None:
        applier = self.ctx.applier
        applier.create_if_not_exists(token_secret(self.config), owner=self.config)

        desired = scan_api_deployment(self.config, self.ctx.scanner_image())
        if (
            self.config.spec.admission.enable
            and self.config.spec.admission.mode == AdmissionMode.ENFORCING
            and self.config.spec.scanner.replicas < 2
        ):
            self.logger.warning(
                f"Scan API for {self.config.namespace}/{self.config.name} runs a single replica "
                "while admission is enforcing; consider at least 2 replicas"
            )
        applier.apply(desired, owner=self.config)
        applier.apply(scan_api_service(self.config), owner=self.config)

        deployment = self.ctx.kube.get("apps/v1", "Deployment", deployment_name(self.config.name), self.ctx.namespace)
        self.update_conditions(
            enabled=True,
            degraded=deployment_degraded(deployment),
            pods=self.ctx.list_pods(scan_api_labels(self.config)),
            degraded_message=service_account_message(deployment),
        )

    def down(self) -> None:
        self.delete("v1", "Service", service_name(self.config.name))
        self.delete("apps/v1", "Deployment", deployment_name(self.config.name))
        self.delete("v1", "Secret", token_secret_name(self.config.name))
