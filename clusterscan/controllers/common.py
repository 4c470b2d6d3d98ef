"""Resource fragments shared by the scan workloads."""

from typing import Any, Dict, List, Optional

from clusterscan.k8s.apply import ApplyOutcome, ResourceApplier
from clusterscan.k8s.client import KubeClient
from clusterscan.k8s.naming import schedule_minute
from clusterscan.k8s.objects import is_owned_by


def object_meta(name: str, namespace: Optional[str], labels: Dict[str, str], annotations=None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"name": name, "labels": dict(labels)}
    if namespace:
        meta["namespace"] = namespace
    if annotations:
        meta["annotations"] = dict(annotations)
    return meta


def default_schedule(schedule: str, seed: str) -> str:
    """User schedule, or an hourly one at a minute derived from seed."""
    if schedule:
        return schedule
    return f"{schedule_minute(seed)} * * * *"


def restricted_security_context(privileged: bool = False, run_as_root: bool = False) -> Dict[str, Any]:
    context: Dict[str, Any] = {
        "allowPrivilegeEscalation": privileged,
        "readOnlyRootFilesystem": True,
        "privileged": privileged,
        "capabilities": {"drop": ["ALL"]},
    }
    if run_as_root:
        context["runAsNonRoot"] = False
        context["runAsUser"] = 0
    else:
        context["runAsNonRoot"] = True
    return context


def config_volume(name: str, creds_secret: str, config_map: Optional[str] = None) -> Dict[str, Any]:
    """Projected volume with the scanner config and, optionally, an inventory."""
    sources: List[Dict[str, Any]] = []
    if config_map:
        sources.append(
            {"configMap": {"name": config_map, "items": [{"key": "inventory", "path": "inventory.yml"}]}}
        )
    sources.append({"secret": {"name": creds_secret, "items": [{"key": "config", "path": "config.yml"}]}})
    return {"name": name, "projected": {"sources": sources, "defaultMode": 0o444}}


def temp_volume() -> Dict[str, Any]:
    return {"name": "temp", "emptyDir": {}}


def cronjob(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    schedule: str,
    pod_spec: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "apiVersion": "batch/v1",
        "kind": "CronJob",
        "metadata": object_meta(name, namespace, labels),
        "spec": {
            "schedule": schedule,
            "concurrencyPolicy": "Forbid",
            "successfulJobsHistoryLimit": 1,
            "failedJobsHistoryLimit": 1,
            "jobTemplate": {
                "metadata": {"labels": dict(labels)},
                "spec": {
                    "backoffLimit": 0,
                    "template": {"metadata": {"labels": dict(labels)}, "spec": pod_spec},
                },
            },
        },
    }


def purge_stale_jobs(
    kube: KubeClient,
    applier: ResourceApplier,
    namespace: str,
    cronjob_name: str,
    labels: Dict[str, str],
    outcome: ApplyOutcome,
) -> List[str]:
    """After a CronJob changed, delete its finished Jobs so status reflects the new spec."""
    if outcome != ApplyOutcome.UPDATED:
        return []
    purged = []
    for job in kube.list("batch/v1", "Job", namespace, labels=labels):
        if not is_owned_by(job, "CronJob", cronjob_name):
            continue
        if (job.get("status") or {}).get("active"):
            continue
        name = job["metadata"]["name"]
        if applier.delete_if_exists("batch/v1", "Job", name, namespace, propagation_policy="Background"):
            purged.append(name)
    return purged


def deployment_degraded(deployment: Optional[Dict[str, Any]], require_ready: bool = False) -> bool:
    """Unavailable replicas, or with require_ready any replica not yet ready."""
    if deployment is None:
        return True
    status = deployment.get("status") or {}
    if status.get("unavailableReplicas"):
        return True
    if require_ready:
        replicas = (deployment.get("spec") or {}).get("replicas", 1)
        return status.get("readyReplicas", 0) != replicas
    return False
