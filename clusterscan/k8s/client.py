"""Narrow cluster API interface and its kubernetes-client implementation."""

import copy
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import NotFoundError, ResourceNotFoundError

from clusterscan.core.deadline import Deadline
from clusterscan.core.exceptions import ObjectNotFound
from clusterscan.core.logging import get_logger

logger = get_logger(__name__)


def format_label_selector(labels: Optional[Dict[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubeClient:
    """Cluster operations the engine needs; objects travel as plain dicts."""

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return the object, or None when it does not exist."""
        raise NotImplementedError

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def apply(self, body: Dict[str, Any], field_manager: str, force: bool = True) -> Dict[str, Any]:
        """Server-side apply of body under field_manager."""
        raise NotImplementedError

    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        propagation_policy: Optional[str] = None,
    ) -> None:
        """Delete an object; raises ObjectNotFound when it (or its kind) is missing."""
        raise NotImplementedError

    def with_deadline(self, deadline: Deadline) -> "KubeClient":
        raise NotImplementedError


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class DynamicKubeClient(KubeClient):
    """KubeClient backed by the kubernetes DynamicClient."""

    def __init__(
        self,
        dynamic: Optional[DynamicClient] = None,
        request_timeout: float = 30.0,
        deadline: Optional[Deadline] = None,
    ):
        self.dynamic = dynamic or DynamicClient(client.ApiClient())
        self.request_timeout = request_timeout
        self.deadline = deadline

    def with_deadline(self, deadline: Deadline) -> "DynamicKubeClient":
        view = copy.copy(self)
        view.deadline = deadline
        return view

    def _timeout(self) -> float:
        if self.deadline is None:
            return self.request_timeout
        return self.deadline.timeout(self.request_timeout)

    def _resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise ObjectNotFound(f"no matches for kind {kind} in version {api_version}") from e

    def get(self, api_version, kind, name, namespace=None):
        resource = self._resource(api_version, kind)
        try:
            obj = self.dynamic.get(
                resource, name=name, namespace=namespace, _request_timeout=self._timeout()
            )
        except NotFoundError:
            return None
        return obj.to_dict()

    def list(self, api_version, kind, namespace=None, labels=None):
        resource = self._resource(api_version, kind)
        result = self.dynamic.get(
            resource,
            namespace=namespace,
            label_selector=format_label_selector(labels),
            _request_timeout=self._timeout(),
        )
        return [item.to_dict() for item in result.items]

    def create(self, body):
        resource = self._resource(body["apiVersion"], body["kind"])
        obj = self.dynamic.create(
            resource,
            body=body,
            namespace=body["metadata"].get("namespace"),
            _request_timeout=self._timeout(),
        )
        return obj.to_dict()

    def apply(self, body, field_manager, force=True):
        resource = self._resource(body["apiVersion"], body["kind"])
        obj = self.dynamic.server_side_apply(
            resource,
            body=body,
            name=body["metadata"]["name"],
            namespace=body["metadata"].get("namespace"),
            field_manager=field_manager,
            force_conflicts=force,
            _request_timeout=self._timeout(),
        )
        return obj.to_dict()

    def delete(self, api_version, kind, name, namespace=None, propagation_policy=None):
        resource = self._resource(api_version, kind)
        body = None
        if propagation_policy:
            body = {"kind": "DeleteOptions", "apiVersion": "v1", "propagationPolicy": propagation_policy}
        try:
            self.dynamic.delete(
                resource,
                name=name,
                namespace=namespace,
                body=body,
                _request_timeout=self._timeout(),
            )
        except NotFoundError as e:
            raise ObjectNotFound(f"{kind} {namespace}/{name} not found") from e
