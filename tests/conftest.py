"""Pytest configuration and shared fixtures for clusterscan tests."""

import copy
import itertools
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from kubernetes.client.exceptions import ApiException

from clusterscan.controllers.base import ReconcileContext
from clusterscan.controllers.scan_config import ScanConfigReconciler
from clusterscan.core.config import Settings
from clusterscan.core.exceptions import ObjectNotFound
from clusterscan.k8s.apply import ResourceApplier
from clusterscan.models.scan_config import ScanConfig
from clusterscan.services.image_cache import ContainerImageResolver, ImageCache

# ============================================================================
# Fake cluster
# ============================================================================


def _merge(existing: Any, patch: Any) -> Any:
    """Approximate server-side apply: dicts merge recursively, the rest replaces."""
    if isinstance(existing, dict) and isinstance(patch, dict):
        merged = copy.deepcopy(existing)
        for key, value in patch.items():
            merged[key] = _merge(existing.get(key), value)
        return merged
    return copy.deepcopy(patch)


def _with_server_defaults(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Fields the API server fills in on its own."""
    if obj["kind"] == "Deployment":
        spec = obj.setdefault("spec", {})
        spec.setdefault("progressDeadlineSeconds", 600)
        spec.setdefault("revisionHistoryLimit", 10)
        pod_spec = spec.setdefault("template", {}).setdefault("spec", {})
        pod_spec.setdefault("dnsPolicy", "ClusterFirst")
        pod_spec.setdefault("schedulerName", "default-scheduler")
    if obj["kind"] == "CronJob":
        obj.setdefault("spec", {}).setdefault("suspend", False)
    return obj


class FakeKubeClient:
    """In-memory cluster with resourceVersion bookkeeping and call counters."""

    def __init__(self):
        self.objects: Dict[tuple, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self._versions = itertools.count(1)
        self.fail_next_get: Optional[ApiException] = None
        self.unknown_kinds = set()

    # -- helpers used by tests -------------------------------------------

    @staticmethod
    def key(api_version, kind, name, namespace=None):
        return (api_version, kind, namespace or None, name)

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Seed an object as if something else had created it."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", str(uuid.uuid4()))
        meta.setdefault("creationTimestamp", datetime.now(timezone.utc).isoformat())
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[self.key(obj["apiVersion"], obj["kind"], meta["name"], meta.get("namespace"))] = obj
        return obj

    def find(self, api_version, kind, name, namespace=None) -> Optional[Dict[str, Any]]:
        obj = self.objects.get(self.key(api_version, kind, name, namespace))
        return copy.deepcopy(obj) if obj is not None else None

    def names(self, kind, namespace=None) -> List[str]:
        return sorted(
            k[3] for k in self.objects if k[1] == kind and (namespace is None or k[2] == namespace)
        )

    def count(self, verb: str) -> int:
        return sum(1 for call in self.calls if call[0] == verb)

    def reset_calls(self):
        self.calls = []

    # -- KubeClient --------------------------------------------------------

    def with_deadline(self, deadline):
        return self

    def _check_kind(self, kind):
        if kind in self.unknown_kinds:
            raise ObjectNotFound(f"no matches for kind {kind}")

    def get(self, api_version, kind, name, namespace=None):
        self.calls.append(("get", kind, name))
        self._check_kind(kind)
        if self.fail_next_get is not None:
            error, self.fail_next_get = self.fail_next_get, None
            raise error
        return self.find(api_version, kind, name, namespace)

    def list(self, api_version, kind, namespace=None, labels=None):
        self.calls.append(("list", kind, namespace))
        self._check_kind(kind)
        items = []
        for (av, k, ns, _), obj in sorted(self.objects.items(), key=lambda kv: str(kv[0])):
            if av != api_version or k != kind:
                continue
            if namespace is not None and ns != namespace:
                continue
            obj_labels = obj["metadata"].get("labels") or {}
            if any(obj_labels.get(lk) != lv for lk, lv in (labels or {}).items()):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def create(self, body):
        self.calls.append(("create", body["kind"], body["metadata"]["name"]))
        meta = body["metadata"]
        if self.key(body["apiVersion"], body["kind"], meta["name"], meta.get("namespace")) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        return self.add(_with_server_defaults(copy.deepcopy(body)))

    def apply(self, body, field_manager, force=True):
        self.calls.append(("apply", body["kind"], body["metadata"]["name"], field_manager, force))
        meta = body["metadata"]
        key = self.key(body["apiVersion"], body["kind"], meta["name"], meta.get("namespace"))
        existing = self.objects.get(key)
        if existing is None:
            return self.add(_with_server_defaults(copy.deepcopy(body)))

        merged = _merge(existing, body)
        merged["metadata"]["resourceVersion"] = existing["metadata"]["resourceVersion"]
        if merged != existing:
            merged["metadata"]["resourceVersion"] = str(next(self._versions))
            self.objects[key] = merged
        return copy.deepcopy(self.objects[key])

    def delete(self, api_version, kind, name, namespace=None, propagation_policy=None):
        self.calls.append(("delete", kind, name))
        self._check_kind(kind)
        key = self.key(api_version, kind, name, namespace)
        if key not in self.objects:
            raise ObjectNotFound(f"{kind} {name} not found")
        del self.objects[key]


# ============================================================================
# Cluster fixtures
# ============================================================================


@pytest.fixture
def kube():
    """Empty in-memory cluster with a kube-system namespace."""
    client = FakeKubeClient()
    client.add({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "kube-system", "uid": "cluster-uid-1234"}})
    return client


@pytest.fixture
def applier(kube):
    """Resource applier bound to the fake cluster."""
    return ResourceApplier(kube)


def make_node(name: str, taints=None, uid=None) -> Dict[str, Any]:
    node = {"apiVersion": "v1", "kind": "Node", "metadata": {"name": name, "uid": uid or f"uid-{name}"}}
    if taints:
        node["spec"] = {"taints": taints}
    return node


@pytest.fixture
def node_factory():
    return make_node


def make_pod(
    name: str,
    container: str,
    created: Optional[datetime] = None,
    exit_code: Optional[int] = None,
    last_exit_code: Optional[int] = None,
    memory_limit: str = "",
    namespace: str = "clusterscan-operator",
    labels: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    status: Dict[str, Any] = {"name": container, "state": {"running": {}}}
    if exit_code is not None:
        status["state"] = {"terminated": {"exitCode": exit_code}}
    if last_exit_code is not None:
        status["lastState"] = {"terminated": {"exitCode": last_exit_code}}
    resources = {"limits": {"memory": memory_limit}} if memory_limit else {}
    meta: Dict[str, Any] = {"name": name, "namespace": namespace, "labels": dict(labels or {})}
    if created is not None:
        meta["creationTimestamp"] = created.strftime("%Y-%m-%dT%H:%M:%SZ")
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": meta,
        "spec": {"containers": [{"name": container, "resources": resources}]},
        "status": {"containerStatuses": [status]},
    }


@pytest.fixture
def pod_factory():
    return make_pod


# ============================================================================
# ScanConfig fixtures
# ============================================================================


@pytest.fixture
def scan_config_body():
    """ScanConfig with every capability disabled."""
    return {
        "apiVersion": "clusterscan.io/v1alpha1",
        "kind": "ScanConfig",
        "metadata": {"name": "clusterscan-client", "namespace": "clusterscan-operator", "uid": "scan-config-uid"},
        "spec": {
            "credsSecretRef": {"name": "clusterscan-client"},
            "scanner": {"image": {"name": "ghcr.io/clusterscan/scanner", "tag": "9"}},
            "nodes": {"enable": False},
            "containers": {"enable": False},
            "kubernetesResources": {"enable": False},
            "admission": {"enable": False},
        },
    }


@pytest.fixture
def settings():
    return Settings(_env_file=None)


# ============================================================================
# Image fixtures
# ============================================================================


class Clock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta):
        self.current += delta


class CountingFetch:
    """Registry stand-in that returns a digest per call."""

    def __init__(self):
        self.calls: List[str] = []

    def __call__(self, image: str) -> str:
        self.calls.append(image)
        name = image.rsplit(":", 1)[0]
        return f"{name}@sha256:{len(self.calls):064d}"


@pytest.fixture
def clock():
    return Clock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fetch():
    return CountingFetch()


@pytest.fixture
def image_cache(fetch, clock):
    return ImageCache(fetch, now=clock)


@pytest.fixture
def image_resolver(image_cache):
    return ContainerImageResolver(image_cache)


# ============================================================================
# Reconciler fixtures
# ============================================================================


@pytest.fixture
def context_factory(kube, applier, image_resolver, settings):
    """Build a ReconcileContext for a ScanConfig body."""

    def make(body, skip_resolve=False, conditions=None):
        config = ScanConfig.from_body(body)
        return ReconcileContext(
            kube=kube,
            applier=applier,
            config=config,
            images=image_resolver,
            settings=settings,
            skip_resolve=skip_resolve,
            conditions=list(config.status.conditions if conditions is None else conditions),
            logger=logging.getLogger("clusterscan.tests"),
        )

    return make


@pytest.fixture
def reconciler(kube, image_resolver, settings):
    return ScanConfigReconciler(kube, image_resolver, settings)
