"""Unit tests for condition aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from clusterscan.models.scan_config import ConditionStatus
from clusterscan.services.conditions import (ADMISSION, NODE_SCANNING,
                                             SCAN_API, detect_oom,
                                             find_condition, newest_pod,
                                             set_condition,
                                             update_always,
                                             update_capability_condition,
                                             update_if_reason_or_message_change,
                                             update_never)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(minutes=5)
T2 = T0 + timedelta(minutes=10)


@pytest.mark.unit
class TestSetCondition:
    """Test the condition transition rules."""

    def test_added_when_absent_regardless_of_status(self):
        """Test a new type is appended for both healthy and degraded input."""
        healthy = set_condition([], "A", ConditionStatus.FALSE, "Ok", "fine", now=T0)
        degraded = set_condition([], "B", ConditionStatus.TRUE, "Bad", "broken", now=T0)

        assert healthy[0].status == ConditionStatus.FALSE
        assert degraded[0].status == ConditionStatus.TRUE
        assert healthy[0].last_transition_time == T0

    def test_input_not_mutated(self):
        """Test the caller's list is left untouched."""
        conditions = set_condition([], "A", ConditionStatus.FALSE, "Ok", "fine", now=T0)
        set_condition(conditions, "A", ConditionStatus.TRUE, "Bad", "broken", now=T1)
        assert conditions[0].status == ConditionStatus.FALSE

    def test_flip_updates_transition_time(self):
        """Test a status flip moves both timestamps."""
        conditions = set_condition([], "A", ConditionStatus.FALSE, "Ok", "fine", now=T0)
        conditions = set_condition(conditions, "A", ConditionStatus.TRUE, "Bad", "broken", now=T1)

        assert len(conditions) == 1
        assert conditions[0].last_transition_time == T1
        assert conditions[0].last_update_time == T1
        assert conditions[0].message == "broken"

    def test_policy_controls_same_status_updates(self):
        """Test reason/message updates without a flip follow the policy."""
        conditions = set_condition([], "A", ConditionStatus.TRUE, "Bad", "broken", now=T0)

        kept = set_condition(conditions, "A", ConditionStatus.TRUE, "Bad", "other", update_never, now=T1)
        assert kept[0].message == "broken"
        assert kept[0].last_update_time == T0

        changed = set_condition(
            conditions, "A", ConditionStatus.TRUE, "Bad", "other", update_if_reason_or_message_change, now=T1
        )
        assert changed[0].message == "other"
        assert changed[0].last_transition_time == T0
        assert changed[0].last_update_time == T1

    def test_update_always_refreshes_update_time(self):
        """Test update_always writes even identical observations."""
        conditions = set_condition([], "A", ConditionStatus.FALSE, "Ok", "fine", now=T0)
        conditions = set_condition(conditions, "A", ConditionStatus.FALSE, "Ok", "fine", update_always, now=T1)
        assert conditions[0].last_update_time == T1
        assert conditions[0].last_transition_time == T0

    def test_flip_ignores_never_policy(self):
        """Test a status change is written even with update_never."""
        conditions = set_condition([], "A", ConditionStatus.FALSE, "Ok", "fine", now=T0)
        conditions = set_condition(conditions, "A", ConditionStatus.TRUE, "Bad", "broken", update_never, now=T1)
        assert conditions[0].status == ConditionStatus.TRUE

    def test_healthy_clears_oom_fields(self):
        """Test flipping to healthy empties affected pods and memory limit."""
        conditions = set_condition(
            [], "A", ConditionStatus.TRUE, "Bad", "oom", affected_pods=["pod-1"], memory_limit="100M", now=T0
        )
        conditions = set_condition(conditions, "A", ConditionStatus.FALSE, "Ok", "fine", now=T1)

        assert conditions[0].affected_pods == []
        assert conditions[0].memory_limit == ""
        assert "affectedPods" not in conditions[0].to_dict()


@pytest.mark.unit
class TestPods:
    """Test newest pod selection and OOM detection."""

    def test_newest_pod(self, pod_factory):
        """Test the latest creation timestamp wins."""
        pods = [
            pod_factory("old", "scanner", created=T0),
            pod_factory("new", "scanner", created=T2),
            pod_factory("mid", "scanner", created=T1),
        ]
        assert newest_pod(pods)["metadata"]["name"] == "new"

    def test_pod_without_timestamp_sorts_first(self, pod_factory):
        """Test pods missing a timestamp never beat a timestamped one."""
        pods = [pod_factory("unset", "scanner"), pod_factory("set", "scanner", created=T0)]
        assert newest_pod(pods)["metadata"]["name"] == "set"

    def test_all_unset_picks_first(self, pod_factory):
        """Test ties keep the first pod."""
        pods = [pod_factory("a", "scanner"), pod_factory("b", "scanner")]
        assert newest_pod(pods)["metadata"]["name"] == "a"

    def test_no_pods(self):
        assert newest_pod([]) is None
        assert detect_oom([], "scanner") is None

    def test_oom_in_last_state(self, pod_factory):
        """Test a restarted container's previous OOM kill is detected."""
        pods = [pod_factory("p", "scanner", created=T0, last_exit_code=137, memory_limit="400M")]
        oom = detect_oom(pods, "scanner")
        assert oom.pod_name == "p"
        assert oom.memory_limit == "400M"

    def test_oom_only_on_newest(self, pod_factory):
        """Test an OOM on an older pod is ignored."""
        pods = [
            pod_factory("old", "scanner", created=T0, exit_code=137),
            pod_factory("new", "scanner", created=T1),
        ]
        assert detect_oom(pods, "scanner") is None

    def test_other_exit_codes_and_containers(self, pod_factory):
        """Test only exit code 137 of the tracked container counts."""
        assert detect_oom([pod_factory("p", "scanner", exit_code=1)], "scanner") is None
        assert detect_oom([pod_factory("p", "sidecar", exit_code=137)], "scanner") is None


@pytest.mark.unit
class TestCapabilityCondition:
    """Test the per-capability degraded/available folding."""

    def test_disabled(self):
        """Test a disabled capability is healthy with a Disabled reason."""
        conditions = update_capability_condition([], NODE_SCANNING, enabled=False, degraded=True)
        assert conditions[0].status == ConditionStatus.FALSE
        assert conditions[0].reason == "NodeScanningDisabled"

    def test_available(self):
        conditions = update_capability_condition([], NODE_SCANNING, enabled=True, degraded=False)
        assert conditions[0].status == ConditionStatus.FALSE
        assert conditions[0].reason == "NodeScanningAvailable"
        assert conditions[0].message == "Node Scanning is available"

    def test_oom(self, pod_factory):
        """Test OOM sets the specific message, pod and memory limit."""
        pods = [pod_factory("scan-1", "scanner", created=T0, exit_code=137, memory_limit="100M")]
        conditions = update_capability_condition([], NODE_SCANNING, enabled=True, degraded=True, pods=pods)

        condition = conditions[0]
        assert condition.status == ConditionStatus.TRUE
        assert condition.message == "Node Scanning is unavailable due to OOM"
        assert condition.affected_pods == ["scan-1"]
        assert condition.memory_limit == "100M"

    def test_oom_message_survives_generic_degradation(self, pod_factory):
        """Test hysteresis keeps the OOM root cause over a vaguer observation."""
        pods = [pod_factory("scan-1", "scanner", created=T0, exit_code=137, memory_limit="100M")]
        conditions = update_capability_condition([], NODE_SCANNING, enabled=True, degraded=True, pods=pods, now=T0)

        conditions = update_capability_condition(
            conditions, NODE_SCANNING, enabled=True, degraded=True,
            degraded_message="something else went wrong", now=T1,
        )

        condition = find_condition(conditions, NODE_SCANNING.condition_type)
        assert condition.message == NODE_SCANNING.oom_message
        assert condition.affected_pods == ["scan-1"]
        assert condition.last_update_time == T0

    def test_oom_cleared_by_healthy(self, pod_factory):
        """Test a healthy observation clears the OOM condition."""
        pods = [pod_factory("scan-1", "scanner", created=T0, exit_code=137, memory_limit="100M")]
        conditions = update_capability_condition([], NODE_SCANNING, enabled=True, degraded=True, pods=pods)
        conditions = update_capability_condition(conditions, NODE_SCANNING, enabled=True, degraded=False)

        assert conditions[0].status == ConditionStatus.FALSE
        assert conditions[0].affected_pods == []
        assert conditions[0].memory_limit == ""

    def test_degraded_message_override(self):
        """Test a specific degraded message replaces the generic one."""
        conditions = update_capability_condition(
            [], SCAN_API, enabled=True, degraded=True, degraded_message='serviceaccount "x" not found'
        )
        assert conditions[0].message == 'serviceaccount "x" not found'
        assert conditions[0].reason == "ScanAPIUnavailable"

    def test_dependency_degradation_propagates(self):
        """Test admission is marked degraded when the scan API is."""
        conditions = update_capability_condition([], SCAN_API, enabled=True, degraded=True)
        conditions = update_capability_condition(
            conditions, ADMISSION, enabled=True, degraded=False, dependency=SCAN_API
        )

        admission = find_condition(conditions, ADMISSION.condition_type)
        assert admission.status == ConditionStatus.TRUE
        assert admission.message == "Admission controller is unavailable because ScanAPI controller is unavailable"

    def test_healthy_dependency_has_no_effect(self):
        conditions = update_capability_condition([], SCAN_API, enabled=True, degraded=False)
        conditions = update_capability_condition(
            conditions, ADMISSION, enabled=True, degraded=False, dependency=SCAN_API
        )
        assert find_condition(conditions, ADMISSION.condition_type).status == ConditionStatus.FALSE
