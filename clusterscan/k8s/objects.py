"""Helpers for reading and building common Kubernetes object fragments."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from clusterscan.models.scan_config import ResourceRequirements

EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)

DEFAULT_SCANNER_RESOURCES = ResourceRequirements(
    limits={"memory": "400M", "cpu": "1"},
    requests={"memory": "180M", "cpu": "400m"},
)

DEFAULT_NODE_SCANNING_RESOURCES = ResourceRequirements(
    limits={"memory": "100M", "cpu": "200m"},
    requests={"memory": "60M", "cpu": "50m"},
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Kubernetes RFC3339 timestamp (or pass a datetime through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def resources_with_defaults(
    requested: Optional[ResourceRequirements], defaults: ResourceRequirements
) -> Dict[str, Dict[str, str]]:
    """User resources when any are set, otherwise the defaults."""
    chosen = requested if requested is not None and not requested.is_empty() else defaults
    out: Dict[str, Dict[str, str]] = {}
    if chosen.limits:
        out["limits"] = dict(chosen.limits)
    if chosen.requests:
        out["requests"] = dict(chosen.requests)
    return out


def taints_to_tolerations(taints: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, str]]:
    tolerations = []
    for taint in taints or []:
        toleration = {"key": taint["key"], "effect": taint["effect"]}
        if taint.get("value"):
            toleration["operator"] = "Equal"
            toleration["value"] = taint["value"]
        else:
            toleration["operator"] = "Exists"
        tolerations.append(toleration)
    return tolerations


def are_cronjobs_successful(cronjobs: Iterable[Dict[str, Any]]) -> bool:
    """False if any idle CronJob's last success predates its last schedule."""
    for cronjob in cronjobs:
        status = cronjob.get("status") or {}
        if status.get("active"):
            continue
        scheduled = parse_timestamp(status.get("lastScheduleTime"))
        if scheduled is None:
            continue
        succeeded = parse_timestamp(status.get("lastSuccessfulTime"))
        if succeeded is None or succeeded < scheduled:
            return False
    return True


def is_owned_by(obj: Dict[str, Any], kind: str, name: str) -> bool:
    refs = (obj.get("metadata") or {}).get("ownerReferences") or []
    return any(r.get("kind") == kind and r.get("name") == name for r in refs)


def container_memory_limit(pod: Dict[str, Any], container_name: str) -> str:
    for container in (pod.get("spec") or {}).get("containers") or []:
        if container.get("name") == container_name:
            limits = (container.get("resources") or {}).get("limits") or {}
            return str(limits.get("memory", ""))
    return ""
