"""
Condition aggregation for capability health.

Raw signals (replica readiness, CronJob success, container terminations) are
folded into one Condition per capability on the ScanConfig status. OOM kills
are reported with the affected pod and its memory limit, and a stored OOM
condition is not overwritten by a vaguer "unavailable" observation.
"""

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from clusterscan.k8s.objects import EPOCH_MIN, container_memory_limit, parse_timestamp
from clusterscan.models.scan_config import Condition, ConditionStatus

OOM_EXIT_CODE = 137

UpdatePolicy = Callable[[str, str, str, str], bool]


def update_always(old_reason: str, old_message: str, new_reason: str, new_message: str) -> bool:
    return True


def update_if_reason_or_message_change(
    old_reason: str, old_message: str, new_reason: str, new_message: str
) -> bool:
    return old_reason != new_reason or old_message != new_message


def update_never(old_reason: str, old_message: str, new_reason: str, new_message: str) -> bool:
    return False


def find_condition(conditions: Iterable[Condition], condition_type: str) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(
    conditions: List[Condition],
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
    update_policy: UpdatePolicy = update_if_reason_or_message_change,
    affected_pods: Optional[List[str]] = None,
    memory_limit: str = "",
    now: Optional[datetime] = None,
) -> List[Condition]:
    """Return a new condition list with condition_type set to the observation."""
    now = now or datetime.now(timezone.utc)
    status = ConditionStatus(status)
    if status == ConditionStatus.FALSE:
        affected_pods, memory_limit = [], ""

    result = [c.model_copy(deep=True) for c in conditions]
    existing = find_condition(result, condition_type)

    if existing is None:
        result.append(
            Condition(
                type=condition_type,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=now,
                last_update_time=now,
                affected_pods=list(affected_pods or []),
                memory_limit=memory_limit,
            )
        )
        return result

    flipped = existing.status != status
    if flipped or update_policy(existing.reason, existing.message, reason, message):
        if flipped:
            existing.last_transition_time = now
        existing.status = status
        existing.reason = reason
        existing.message = message
        existing.affected_pods = list(affected_pods or [])
        existing.memory_limit = memory_limit
        existing.last_update_time = now
    return result


def newest_pod(pods: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Most recently created pod; pods without a timestamp sort first."""
    newest, newest_ts = None, None
    for pod in pods:
        created = parse_timestamp((pod.get("metadata") or {}).get("creationTimestamp")) or EPOCH_MIN
        if newest is None or created > newest_ts:
            newest, newest_ts = pod, created
    return newest


@dataclass
class OOMObservation:
    """A container found killed for exceeding its memory limit"""

    pod_name: str
    memory_limit: str


def _exit_code(state: Optional[Dict[str, Any]]) -> Optional[int]:
    terminated = (state or {}).get("terminated")
    if not terminated:
        return None
    return terminated.get("exitCode")


def detect_oom(pods: Iterable[Dict[str, Any]], container_name: str) -> Optional[OOMObservation]:
    pod = newest_pod(pods)
    if pod is None:
        return None
    for status in (pod.get("status") or {}).get("containerStatuses") or []:
        if status.get("name") != container_name:
            continue
        if OOM_EXIT_CODE in (_exit_code(status.get("state")), _exit_code(status.get("lastState"))):
            return OOMObservation(
                pod_name=pod["metadata"]["name"],
                memory_limit=container_memory_limit(pod, container_name),
            )
    return None


@dataclass(frozen=True)
class CapabilityConditions:
    """Condition vocabulary of one capability."""

    condition_type: str
    label: str
    reason_prefix: str
    container_name: str = ""

    @property
    def available_reason(self) -> str:
        return f"{self.reason_prefix}Available"

    @property
    def disabled_reason(self) -> str:
        return f"{self.reason_prefix}Disabled"

    @property
    def unavailable_reason(self) -> str:
        return f"{self.reason_prefix}Unavailable"

    @property
    def available_message(self) -> str:
        return f"{self.label} is available"

    @property
    def disabled_message(self) -> str:
        return f"{self.label} is disabled"

    @property
    def unavailable_message(self) -> str:
        return f"{self.label} is unavailable"

    @property
    def oom_message(self) -> str:
        return f"{self.label} is unavailable due to OOM"


NODE_SCANNING = CapabilityConditions(
    "NodeScanningDegraded", "Node Scanning", "NodeScanning", container_name="scanner"
)
K8S_RESOURCES_SCANNING = CapabilityConditions(
    "K8sResourcesScanningDegraded", "Kubernetes Resources Scanning", "K8sResourcesScanning",
    container_name="clusterscan-k8s-scan",
)
CONTAINER_IMAGE_SCANNING = CapabilityConditions(
    "K8sContainerImageScanningDegraded", "Kubernetes Container Image Scanning",
    "K8sContainerImageScanning", container_name="clusterscan-containers-scan",
)
SCAN_API = CapabilityConditions(
    "ScanAPIDegraded", "ScanAPI controller", "ScanAPI", container_name="scanner"
)
ADMISSION = CapabilityConditions(
    "AdmissionDegraded", "Admission controller", "Admission", container_name="webhook"
)


def update_capability_condition(
    conditions: List[Condition],
    capability: CapabilityConditions,
    enabled: bool,
    degraded: bool,
    pods: Iterable[Dict[str, Any]] = (),
    degraded_message: Optional[str] = None,
    dependency: Optional[CapabilityConditions] = None,
    now: Optional[datetime] = None,
) -> List[Condition]:
    """Fold one observation of a capability into the condition list."""
    kind = capability

    if not enabled:
        return set_condition(
            conditions, kind.condition_type, ConditionStatus.FALSE,
            kind.disabled_reason, kind.disabled_message, now=now,
        )

    oom = detect_oom(pods, kind.container_name) if kind.container_name else None
    if oom is not None:
        return set_condition(
            conditions, kind.condition_type, ConditionStatus.TRUE,
            kind.unavailable_reason, kind.oom_message,
            affected_pods=[oom.pod_name], memory_limit=oom.memory_limit, now=now,
        )

    if dependency is not None:
        upstream = find_condition(conditions, dependency.condition_type)
        if upstream is not None and upstream.status == ConditionStatus.TRUE:
            return set_condition(
                conditions, kind.condition_type, ConditionStatus.TRUE,
                kind.unavailable_reason,
                f"{kind.label} is unavailable because {dependency.label} is unavailable",
                now=now,
            )

    if degraded:
        current = find_condition(conditions, kind.condition_type)
        if (
            current is not None
            and current.status == ConditionStatus.TRUE
            and current.message == kind.oom_message
        ):
            return copy.deepcopy(conditions)
        return set_condition(
            conditions, kind.condition_type, ConditionStatus.TRUE,
            kind.unavailable_reason, degraded_message or kind.unavailable_message, now=now,
        )

    return set_condition(
        conditions, kind.condition_type, ConditionStatus.FALSE,
        kind.available_reason, kind.available_message, now=now,
    )


def conditions_equal(a: Iterable[Condition], b: Iterable[Condition]) -> bool:
    return [c.to_dict() for c in a] == [c.to_dict() for c in b]
