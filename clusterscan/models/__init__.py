"""Resource models."""

from .scan_config import (API_VERSION, KIND, PLURAL, Admission,
                          AdmissionMode, CertificateProvisioningMode,
                          Condition, ConditionStatus, Image, NodeScanStyle,
                          OperatorConfig, ResourceRequirements, ScanConfig,
                          ScanConfigSpec, ScanConfigStatus)

__all__ = [
    "API_VERSION",
    "KIND",
    "PLURAL",
    "Admission",
    "AdmissionMode",
    "CertificateProvisioningMode",
    "Condition",
    "ConditionStatus",
    "Image",
    "NodeScanStyle",
    "OperatorConfig",
    "ResourceRequirements",
    "ScanConfig",
    "ScanConfigSpec",
    "ScanConfigStatus",
]
