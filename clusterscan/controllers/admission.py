"""Admission webhook that checks workloads against the scan API."""

from typing import Any, Dict, Optional

from clusterscan.controllers.base import (SCAN_API_TOKEN_PATH,
                                          CapabilityHandler, ReconcileContext,
                                          scan_labels)
from clusterscan.controllers.certificates import (CertificateProvider,
                                                  provider_for,
                                                  tls_secret_name)
from clusterscan.controllers.common import (deployment_degraded, object_meta,
                                            restricted_security_context)
from clusterscan.controllers.scan_api import scan_api_url, token_secret_name
from clusterscan.models.scan_config import AdmissionMode, ScanConfig
from clusterscan.services.conditions import ADMISSION, SCAN_API

WEBHOOK_PORT = 9443
SERVICE_PORT = 443
WEBHOOK_PATH = "/validate-k8s-clusterscan-io"
WEBHOOK_NAME_LABEL = "clusterscan-operator-webhook"
CONTAINER_NAME = "webhook"

WORKLOAD_RULES = [
    {"apiGroups": [""], "apiVersions": ["v1"], "resources": ["pods"]},
    {"apiGroups": ["apps"], "apiVersions": ["v1"], "resources": ["deployments", "daemonsets", "statefulsets", "replicasets"]},
    {"apiGroups": ["batch"], "apiVersions": ["v1"], "resources": ["jobs", "cronjobs"]},
]


def webhook_labels(config: ScanConfig) -> Dict[str, str]:
    labels = scan_labels(config, "admission")
    labels["app.kubernetes.io/name"] = WEBHOOK_NAME_LABEL
    return labels


def deployment_name(parent: str) -> str:
    return f"{parent}-webhook-manager"


def service_name(parent: str) -> str:
    return f"{parent}-webhook-service"


def webhook_configuration_name(config: ScanConfig) -> str:
    return f"{config.namespace}-{config.name}-clusterscan"


def webhook_service(config: ScanConfig, annotations: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    labels = webhook_labels(config)
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": object_meta(service_name(config.name), config.namespace, labels, annotations),
        "spec": {
            "selector": labels,
            "ports": [{"port": SERVICE_PORT, "targetPort": WEBHOOK_PORT, "protocol": "TCP"}],
        },
    }


def webhook_deployment(config: ScanConfig, image: str) -> Dict[str, Any]:
    admission = config.spec.admission
    labels = webhook_labels(config)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": object_meta(deployment_name(config.name), config.namespace, labels),
        "spec": {
            "replicas": admission.replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "serviceAccountName": admission.service_account_name,
                    "containers": [
                        {
                            "name": CONTAINER_NAME,
                            "image": image,
                            "imagePullPolicy": "IfNotPresent",
                            "command": ["/clusterscan-operator", "webhook"],
                            "args": [
                                "--token-file-path", SCAN_API_TOKEN_PATH,
                                "--enforcement-mode", admission.mode.value,
                                "--scan-api-url", scan_api_url(config),
                            ],
                            "ports": [{"containerPort": WEBHOOK_PORT, "name": "webhook", "protocol": "TCP"}],
                            "resources": {
                                "limits": {"cpu": "500m", "memory": "128Mi"},
                                "requests": {"cpu": "100m", "memory": "64Mi"},
                            },
                            "securityContext": restricted_security_context(),
                            "volumeMounts": [
                                {"name": "cert", "mountPath": "/tmp/k8s-webhook-server/serving-certs", "readOnly": True},
                                {"name": "token", "mountPath": "/etc/scanapi", "readOnly": True},
                            ],
                        }
                    ],
                    "volumes": [
                        {"name": "cert", "secret": {"secretName": tls_secret_name(config.name), "defaultMode": 0o420}},
                        {"name": "token", "secret": {"secretName": token_secret_name(config.name)}},
                    ],
                },
            },
        },
    }


def validating_webhook_configuration(config: ScanConfig, annotation: Dict[str, str]) -> Dict[str, Any]:
    enforcing = config.spec.admission.mode == AdmissionMode.ENFORCING
    return {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "ValidatingWebhookConfiguration",
        "metadata": {
            "name": webhook_configuration_name(config),
            "labels": webhook_labels(config),
            "annotations": dict(annotation),
        },
        "webhooks": [
            {
                "name": "policy.k8s.clusterscan.io",
                "admissionReviewVersions": ["v1"],
                "sideEffects": "None",
                "failurePolicy": "Fail" if enforcing else "Ignore",
                "timeoutSeconds": 10,
                "clientConfig": {
                    "service": {
                        "name": service_name(config.name),
                        "namespace": config.namespace,
                        "path": WEBHOOK_PATH,
                        "port": SERVICE_PORT,
                    }
                },
                "namespaceSelector": {
                    "matchExpressions": [
                        {
                            "key": "kubernetes.io/metadata.name",
                            "operator": "NotIn",
                            "values": [config.namespace, "kube-system"],
                        }
                    ]
                },
                "rules": [dict(rule, operations=["CREATE", "UPDATE"], scope="Namespaced") for rule in WORKLOAD_RULES],
            }
        ],
    }


class AdmissionHandler(CapabilityHandler):
    name = "admission"
    capability = ADMISSION

    def __init__(self, ctx: ReconcileContext, cert_providers: Optional[Dict] = None):
        super().__init__(ctx)
        self.cert_providers = cert_providers

    def enabled(self) -> bool:
        return self.config.spec.admission.enable

    def certificate_provider(self) -> CertificateProvider:
        return provider_for(self.config.spec.admission.certificate_provisioning.mode, self.cert_providers)

    def sync(self) -> None:
        applier = self.ctx.applier
        provider = self.certificate_provider()
        image = self.ctx.images.operator_image(self.config.spec.admission.image, self.ctx.skip_resolve)

        svc_name = service_name(self.config.name)
        key, value = provider.prepare(applier, self.config, svc_name)

        applier.apply(webhook_service(self.config, provider.service_annotations(self.config)), owner=self.config)
        applier.apply(webhook_deployment(self.config, image), owner=self.config)
        # Cluster-scoped; cannot be owned by a namespaced ScanConfig.
        applier.apply_without_owner(validating_webhook_configuration(self.config, {key: value}))

        deployment = self.ctx.kube.get("apps/v1", "Deployment", deployment_name(self.config.name), self.ctx.namespace)
        self.update_conditions(
            enabled=True,
            degraded=deployment_degraded(deployment, require_ready=True),
            pods=self.ctx.list_pods(webhook_labels(self.config)),
            dependency=SCAN_API,
        )

    def down(self) -> None:
        self.delete(
            "admissionregistration.k8s.io/v1",
            "ValidatingWebhookConfiguration",
            webhook_configuration_name(self.config),
            namespace=None,
        )
        self.delete("apps/v1", "Deployment", deployment_name(self.config.name))
        self.delete("v1", "Service", service_name(self.config.name))
