"""
TLS provisioning backends for the admission webhook.

The webhook only needs an annotation that tells the platform how to inject
the CA bundle; issuing the certificate is left to the backend itself.
"""

from typing import Dict, Optional, Tuple

from clusterscan.core.exceptions import ConfigurationError
from clusterscan.k8s.apply import ResourceApplier
from clusterscan.models.scan_config import (CertificateProvisioningMode,
                                            ScanConfig)

CERT_MANAGER_API_VERSION = "cert-manager.io/v1"
CERT_MANAGER_INJECT_ANNOTATION = "cert-manager.io/inject-ca-from"
OPENSHIFT_INJECT_ANNOTATION = "service.beta.openshift.io/inject-cabundle"
OPENSHIFT_SERVING_CERT_ANNOTATION = "service.beta.openshift.io/serving-cert-secret-name"
MANUAL_TLS_ANNOTATION = "clusterscan.io/tls-mode"


def tls_secret_name(parent: str) -> str:
    return f"{parent}-webhook-server-cert"


class CertificateProvider:
    """Prepares TLS material for the webhook service."""

    def prepare(self, applier: ResourceApplier, config: ScanConfig, service_name: str) -> Tuple[str, str]:
        """Return the (annotation key, annotation value) for the webhook configuration."""
        raise NotImplementedError

    def service_annotations(self, config: ScanConfig) -> Dict[str, str]:
        return {}


class ManualCertificateProvider(CertificateProvider):
    """The user installs the TLS secret and CA bundle themselves."""

    def prepare(self, applier, config, service_name):
        return MANUAL_TLS_ANNOTATION, "manual"


class OpenShiftCertificateProvider(CertificateProvider):
    """The service CA operator signs the serving cert and injects the bundle."""

    def prepare(self, applier, config, service_name):
        return OPENSHIFT_INJECT_ANNOTATION, "true"

    def service_annotations(self, config):
        return {OPENSHIFT_SERVING_CERT_ANNOTATION: tls_secret_name(config.name)}


class CertManagerCertificateProvider(CertificateProvider):
    """Declares a self-signed Issuer and a Certificate for cert-manager."""

    def prepare(self, applier, config, service_name):
        issuer_name = f"{config.name}-selfsigned-issuer"
        cert_name = f"{config.name}-webhook-serving-cert"
        labels = {"app": "clusterscan", "clusterscan_cr": config.name}
        applier.apply(
            {
                "apiVersion": CERT_MANAGER_API_VERSION,
                "kind": "Issuer",
                "metadata": {"name": issuer_name, "namespace": config.namespace, "labels": labels},
                "spec": {"selfSigned": {}},
            },
            owner=config,
        )
        applier.apply(
            {
                "apiVersion": CERT_MANAGER_API_VERSION,
                "kind": "Certificate",
                "metadata": {"name": cert_name, "namespace": config.namespace, "labels": labels},
                "spec": {
                    "dnsNames": [
                        f"{service_name}.{config.namespace}.svc",
                        f"{service_name}.{config.namespace}.svc.cluster.local",
                    ],
                    "issuerRef": {"kind": "Issuer", "name": issuer_name},
                    "secretName": tls_secret_name(config.name),
                },
            },
            owner=config,
        )
        return CERT_MANAGER_INJECT_ANNOTATION, f"{config.namespace}/{cert_name}"


DEFAULT_PROVIDERS: Dict[CertificateProvisioningMode, CertificateProvider] = {
    CertificateProvisioningMode.MANUAL: ManualCertificateProvider(),
    CertificateProvisioningMode.OPENSHIFT: OpenShiftCertificateProvider(),
    CertificateProvisioningMode.CERT_MANAGER: CertManagerCertificateProvider(),
}


def provider_for(mode, providers: Optional[Dict] = None) -> CertificateProvider:
    providers = DEFAULT_PROVIDERS if providers is None else providers
    try:
        return providers[CertificateProvisioningMode(mode)]
    except (KeyError, ValueError):
        raise ConfigurationError(f"unknown certificate provisioning mode {mode!r}") from None
