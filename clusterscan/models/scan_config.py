"""ScanConfig custom resource models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from clusterscan.core.exceptions import ConfigurationError

GROUP = "clusterscan.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "ScanConfig"
PLURAL = "scanconfigs"
OPERATOR_CONFIG_KIND = "ScanOperatorConfig"


class ConditionStatus(str, Enum):
    """Condition status values."""

    TRUE = "True"
    FALSE = "False"


class NodeScanStyle(str, Enum):
    """How node scans are delivered."""

    CRONJOB = "cronjob"
    DEPLOYMENT = "deployment"


class AdmissionMode(str, Enum):
    PERMISSIVE = "permissive"
    ENFORCING = "enforcing"


class CertificateProvisioningMode(str, Enum):
    CERT_MANAGER = "cert-manager"
    OPENSHIFT = "openshift"
    MANUAL = "manual"


class WireModel(BaseModel):
    """Base model for camelCase resource fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LocalObjectReference(WireModel):
    name: str = ""


class Image(WireModel):
    name: str = ""
    tag: str = ""
    digest: str = ""


class ResourceRequirements(WireModel):
    limits: Dict[str, str] = Field(default_factory=dict)
    requests: Dict[str, str] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.limits and not self.requests


class Scanner(WireModel):
    service_account_name: str = Field("clusterscan-operator-k8s-resources-scanning", alias="serviceAccountName")
    image: Image = Field(default_factory=Image)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    private_registries_pull_secret_ref: LocalObjectReference = Field(
        default_factory=LocalObjectReference, alias="privateRegistriesPullSecretRef"
    )
    replicas: int = 1


class KubernetesResources(WireModel):
    enable: bool = False
    schedule: str = ""


class Nodes(WireModel):
    enable: bool = False
    style: NodeScanStyle = NodeScanStyle.CRONJOB
    schedule: str = ""
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    priority_class_name: str = Field("", alias="priorityClassName")


class Containers(WireModel):
    enable: bool = False
    schedule: str = ""
    workers: int = 0
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)


class CertificateProvisioning(WireModel):
    mode: CertificateProvisioningMode = CertificateProvisioningMode.MANUAL


class Admission(WireModel):
    enable: bool = False
    mode: AdmissionMode = AdmissionMode.PERMISSIVE
    replicas: int = 1
    image: Image = Field(default_factory=Image)
    service_account_name: str = Field("clusterscan-operator-webhook", alias="serviceAccountName")
    certificate_provisioning: CertificateProvisioning = Field(
        default_factory=CertificateProvisioning, alias="certificateProvisioning"
    )


class ScanConfigSpec(WireModel):
    creds_secret_ref: LocalObjectReference = Field(
        default_factory=LocalObjectReference, alias="credsSecretRef"
    )
    scanner: Scanner = Field(default_factory=Scanner)
    kubernetes_resources: KubernetesResources = Field(
        default_factory=KubernetesResources, alias="kubernetesResources"
    )
    nodes: Nodes = Field(default_factory=Nodes)
    containers: Containers = Field(default_factory=Containers)
    admission: Admission = Field(default_factory=Admission)


class Condition(WireModel):
    """A typed health entry on the ScanConfig status."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = Field(None, alias="lastTransitionTime")
    last_update_time: Optional[datetime] = Field(None, alias="lastUpdateTime")
    affected_pods: List[str] = Field(default_factory=list, alias="affectedPods")
    memory_limit: str = Field("", alias="memoryLimit")

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        if not self.affected_pods:
            data.pop("affectedPods", None)
        if not self.memory_limit:
            data.pop("memoryLimit", None)
        return data


class ScanConfigStatus(WireModel):
    conditions: List[Condition] = Field(default_factory=list)
    pods: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conditions": [c.to_dict() for c in self.conditions],
            "pods": list(self.pods),
        }


class ScanConfig(WireModel):
    """Parsed ScanConfig resource."""

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: str = KIND
    name: str
    namespace: str
    uid: str = ""
    deleting: bool = False
    spec: ScanConfigSpec = Field(default_factory=ScanConfigSpec)
    status: ScanConfigStatus = Field(default_factory=ScanConfigStatus)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "ScanConfig":
        """Build from a raw resource body as delivered by the watch layer."""
        meta = body.get("metadata") or {}
        try:
            return cls(
                apiVersion=body.get("apiVersion", API_VERSION),
                kind=body.get("kind", KIND),
                name=meta["name"],
                namespace=meta.get("namespace", ""),
                uid=meta.get("uid", ""),
                deleting=bool(meta.get("deletionTimestamp")),
                spec=ScanConfigSpec.model_validate(dict(body.get("spec") or {})),
                status=ScanConfigStatus.model_validate(dict(body.get("status") or {})),
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid ScanConfig {meta.get('name')!r}: {e}") from e


class OperatorConfig(WireModel):
    """Cluster-wide operator switches (ScanOperatorConfig spec)."""

    skip_container_resolution: bool = Field(False, alias="skipContainerResolution")
