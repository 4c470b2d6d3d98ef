"""
Per-node fan-out and garbage collection.

One resource set is derived per cluster node. Sets are found again by a
stable label selector, and any labelled object whose name is not derived
from a current node is deleted together with the rest of its set.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from clusterscan.core import metrics
from clusterscan.core.logging import get_logger, log_event
from clusterscan.k8s.apply import ApplyOutcome, ResourceApplier
from clusterscan.k8s.client import KubeClient

# (apiVersion, kind)
KindRef = Tuple[str, str]

NodeResourceSet = List[Dict[str, Any]]
NodeBuilder = Callable[[Dict[str, Any]], NodeResourceSet]


@dataclass
class SyncResult:
    """Outcome of one fan-out pass."""

    applied: Dict[str, List[Tuple[Dict[str, Any], ApplyOutcome]]]
    deleted: List[str]

    def outcomes(self, node_name: str) -> List[ApplyOutcome]:
        return [outcome for _, outcome in self.applied.get(node_name, [])]


class NodeFanout:
    """Keeps one resource set per node in sync with the node list."""

    def __init__(
        self,
        applier: ResourceApplier,
        kube: KubeClient,
        owner: Any,
        namespace: str,
        selector: Dict[str, str],
        managed_kinds: Sequence[KindRef],
        teardown_kinds: Sequence[KindRef] = (),
        logger: Optional[logging.Logger] = None,
    ):
        self.applier = applier
        self.kube = kube
        self.owner = owner
        self.namespace = namespace
        self.selector = dict(selector)
        self.managed_kinds = list(managed_kinds)
        self.teardown_kinds = list(teardown_kinds)
        self.logger = logger or get_logger(__name__)

    def sync(self, nodes: Iterable[Dict[str, Any]], builder: NodeBuilder) -> SyncResult:
        """Apply every node's set, then delete sets of nodes that are gone."""
        deleted = self._delete_labelled(self.teardown_kinds, keep=set())

        applied: Dict[str, List[Tuple[Dict[str, Any], ApplyOutcome]]] = {}
        desired_names: Set[Tuple[str, str]] = set()
        for node in nodes:
            node_name = node["metadata"]["name"]
            results = []
            for desired in builder(node):
                self._check_selector(desired)
                desired_names.add((desired["kind"], desired["metadata"]["name"]))
                results.append((desired, self.applier.apply(desired, owner=self.owner)))
            applied[node_name] = results

        deleted.extend(self._delete_labelled(self.managed_kinds, keep=desired_names))
        return SyncResult(applied=applied, deleted=deleted)

    def teardown(self) -> List[str]:
        """Delete every labelled object of both delivery styles."""
        return self._delete_labelled(self.managed_kinds + self.teardown_kinds, keep=set())

    def _delete_labelled(self, kinds: Sequence[KindRef], keep: Set[Tuple[str, str]]) -> List[str]:
        deleted = []
        for api_version, kind in kinds:
            for obj in self.kube.list(api_version, kind, self.namespace, labels=self.selector):
                name = obj["metadata"]["name"]
                if (kind, name) in keep:
                    continue
                if self.applier.delete_if_exists(
                    api_version, kind, name, self.namespace, propagation_policy="Background"
                ):
                    metrics.garbage_collected.labels(kind=kind).inc()
                    log_event(
                        self.logger, "info", "garbage_collected",
                        kind=kind, object_name=name, namespace=self.namespace,
                    )
                    deleted.append(f"{kind}/{name}")
        return deleted

    def _check_selector(self, desired: Dict[str, Any]) -> None:
        labels = desired.get("metadata", {}).get("labels") or {}
        missing = {k: v for k, v in self.selector.items() if labels.get(k) != v}
        if missing:
            self.logger.warning(
                f"{desired['kind']} {desired['metadata']['name']} lacks selector labels {missing};"
                " it will not be garbage collected"
            )
