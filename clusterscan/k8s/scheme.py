"""Maps Python model types to their Kubernetes apiVersion/kind."""

from typing import Any, Dict, Optional, Tuple, Type

from clusterscan.core.exceptions import ConfigurationError
from clusterscan.models.scan_config import API_VERSION, KIND, ScanConfig


class TypeRegistry:
    """Resolves the apiVersion/kind of owner values that do not carry one."""

    def __init__(self):
        self._types: Dict[Type, Tuple[str, str]] = {}

    def register(self, model: Type, api_version: str, kind: str) -> None:
        self._types[model] = (api_version, kind)

    def lookup(self, model: Type) -> Optional[Tuple[str, str]]:
        for cls in getattr(model, "__mro__", (model,)):
            if cls in self._types:
                return self._types[cls]
        return None

    def owner_identity(self, owner: Any) -> Dict[str, str]:
        """Return apiVersion, kind, name and uid of an owner value."""
        if isinstance(owner, dict):
            meta = owner.get("metadata") or {}
            api_version, kind = owner.get("apiVersion"), owner.get("kind")
            name, uid = meta.get("name"), meta.get("uid")
        else:
            api_version = getattr(owner, "api_version", None)
            kind = getattr(owner, "kind", None)
            name, uid = getattr(owner, "name", None), getattr(owner, "uid", None)

        if not api_version or not kind:
            registered = self.lookup(type(owner))
            if registered is None:
                raise ConfigurationError(
                    f"cannot determine kind of owner {name!r} ({type(owner).__name__})"
                )
            api_version, kind = registered

        if not name or not uid:
            raise ConfigurationError(f"owner {kind} {name!r} has no name/uid")

        return {"apiVersion": api_version, "kind": kind, "name": name, "uid": uid}


def default_registry() -> TypeRegistry:
    """Registry with the operator's own resource models."""
    registry = TypeRegistry()
    registry.register(ScanConfig, API_VERSION, KIND)
    return registry
