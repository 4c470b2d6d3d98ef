"""
Create-or-update-or-unchanged primitive for cluster objects.

Every managed object goes through server-side apply under one field manager,
so fields populated by the API server or other controllers are left alone.
The returned ApplyOutcome lets callers run side effects only when something
actually changed.
"""

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from kubernetes.client.exceptions import ApiException

from clusterscan.core import metrics
from clusterscan.core.exceptions import ConfigurationError, ObjectNotFound
from clusterscan.core.logging import get_logger
from clusterscan.k8s.client import KubeClient
from clusterscan.k8s.equality import semantically_equal
from clusterscan.k8s.scheme import TypeRegistry, default_registry

FIELD_MANAGER = "clusterscan-operator"


class ApplyOutcome(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    UNCHANGED = "Unchanged"


@dataclass
class ApplyOptions:
    """Options for a single apply call"""

    # Take over fields last written by another manager (e.g. kubectl or an
    # older client-side update).
    force_ownership: bool = True


def object_ref(obj: Dict[str, Any]) -> str:
    meta = obj.get("metadata") or {}
    if meta.get("namespace"):
        return f"{obj.get('kind')} {meta['namespace']}/{meta.get('name')}"
    return f"{obj.get('kind')} {meta.get('name')}"


def owner_reference(owner: Any, registry: TypeRegistry) -> Dict[str, Any]:
    ref = registry.owner_identity(owner)
    ref["controller"] = True
    ref["blockOwnerDeletion"] = True
    return ref


def set_owner_reference(obj: Dict[str, Any], ref: Dict[str, Any]) -> None:
    """Put ref on obj, replacing any reference to the same owner uid."""
    meta = obj.setdefault("metadata", {})
    refs = [r for r in meta.get("ownerReferences") or [] if r.get("uid") != ref["uid"]]
    refs.append(ref)
    meta["ownerReferences"] = refs


class ResourceApplier:
    """Applies desired objects and reports what happened."""

    def __init__(
        self,
        kube: KubeClient,
        registry: Optional[TypeRegistry] = None,
        field_manager: str = FIELD_MANAGER,
        logger: Optional[logging.Logger] = None,
    ):
        self.kube = kube
        self.registry = registry or default_registry()
        self.field_manager = field_manager
        self.logger = logger or get_logger(__name__)

    def apply(
        self, desired: Dict[str, Any], owner: Any = None, options: Optional[ApplyOptions] = None
    ) -> ApplyOutcome:
        """Converge one object to desired, linking it to owner for garbage collection."""
        options = options or ApplyOptions()
        api_version, kind, name, namespace = self._identity(desired)
        body = copy.deepcopy(desired)

        existing = self.kube.get(api_version, kind, name, namespace)

        if owner is not None:
            set_owner_reference(body, owner_reference(owner, self.registry))

        self.kube.apply(body, field_manager=self.field_manager, force=options.force_ownership)

        if existing is None:
            outcome = ApplyOutcome.CREATED
        else:
            outcome = self._confirm(existing, body, api_version, kind, name, namespace)

        metrics.apply_operations.labels(kind=kind, outcome=outcome.value).inc()
        if outcome != ApplyOutcome.UNCHANGED:
            self.logger.info(f"{outcome.value} {object_ref(body)}")
        else:
            self.logger.debug(f"Unchanged {object_ref(body)}")
        return outcome

    def apply_without_owner(
        self, desired: Dict[str, Any], options: Optional[ApplyOptions] = None
    ) -> ApplyOutcome:
        """Apply for cluster-scoped or intentionally unowned objects."""
        return self.apply(desired, owner=None, options=options)

    def create_if_not_exists(self, desired: Dict[str, Any], owner: Any = None) -> ApplyOutcome:
        """Create desired once; an existing object is never modified."""
        api_version, kind, name, namespace = self._identity(desired)
        if self.kube.get(api_version, kind, name, namespace) is not None:
            return ApplyOutcome.UNCHANGED

        body = copy.deepcopy(desired)
        if owner is not None:
            set_owner_reference(body, owner_reference(owner, self.registry))
        try:
            self.kube.create(body)
        except ApiException as e:
            if e.status == 409:
                return ApplyOutcome.UNCHANGED
            raise

        metrics.apply_operations.labels(kind=kind, outcome=ApplyOutcome.CREATED.value).inc()
        self.logger.info(f"Created {object_ref(body)}")
        return ApplyOutcome.CREATED

    def delete_if_exists(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        propagation_policy: Optional[str] = None,
    ) -> bool:
        """Delete an object; a missing object or kind counts as success."""
        try:
            self.kube.delete(api_version, kind, name, namespace, propagation_policy=propagation_policy)
        except ObjectNotFound:
            return False
        self.logger.info(f"Deleted {kind} {namespace + '/' if namespace else ''}{name}")
        return True

    def _confirm(self, existing, body, api_version, kind, name, namespace) -> ApplyOutcome:
        try:
            current = self.kube.get(api_version, kind, name, namespace)
        except ApiException as e:
            self.logger.warning(f"Could not re-read {object_ref(body)} after apply: {e.reason}")
            return ApplyOutcome.UPDATED
        if current is None or not semantically_equal(existing, current, body):
            return ApplyOutcome.UPDATED
        return ApplyOutcome.UNCHANGED

    @staticmethod
    def _identity(desired: Dict[str, Any]):
        api_version, kind = desired.get("apiVersion"), desired.get("kind")
        meta = desired.get("metadata") or {}
        if not api_version or not kind:
            raise ConfigurationError(
                f"object {meta.get('name')!r} is missing apiVersion or kind"
            )
        if not meta.get("name"):
            raise ConfigurationError(f"{kind} object has no metadata.name")
        return api_version, kind, meta["name"], meta.get("namespace")
