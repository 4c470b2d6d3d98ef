"""Cluster API access: client interface, apply primitive, naming."""

from .apply import ApplyOptions, ApplyOutcome, ResourceApplier
from .client import DynamicKubeClient, KubeClient, load_kube_config
from .scheme import TypeRegistry, default_registry

__all__ = [
    "ApplyOptions",
    "ApplyOutcome",
    "ResourceApplier",
    "DynamicKubeClient",
    "KubeClient",
    "load_kube_config",
    "TypeRegistry",
    "default_registry",
]
