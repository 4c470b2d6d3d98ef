"""Unit tests for per-node resource naming."""

import re

import pytest

from clusterscan.k8s.naming import (MIN_HASH_LENGTH, RESOURCE_NAME_MAX_LENGTH,
                                    node_name_or_hash, node_resource_name,
                                    schedule_minute)


@pytest.mark.unit
class TestNodeResourceName:
    """Test node names are embedded or hashed within the length ceiling."""

    def test_short_name_kept(self):
        """Test short node names are used verbatim."""
        assert node_resource_name("clusterscan-client", "-node-", "node01") == "clusterscan-client-node-node01"

    def test_long_name_hashed_within_limit(self):
        """Test long node names are replaced by a hash that fits."""
        node = "ip-10-0-12-34.eu-central-1.compute.internal.example-cluster-name"
        name = node_resource_name("clusterscan-client", "-node-", node)

        assert len(name) == RESOURCE_NAME_MAX_LENGTH
        assert name.startswith("clusterscan-client-node-")
        assert node not in name

    def test_hash_is_deterministic(self):
        """Test the same node always maps to the same name."""
        node = "x" * 80
        assert node_resource_name("p", "-node-", node) == node_resource_name("p", "-node-", node)

    def test_shared_prefix_does_not_collide(self):
        """Test two long names with a common prefix hash differently."""
        prefix = "worker-pool-with-a-very-long-descriptive-name-"
        a = node_resource_name("clusterscan-client", "-node-", prefix + "aaaa")
        b = node_resource_name("clusterscan-client", "-node-", prefix + "bbbb")
        assert a != b

    def test_exact_fit_not_hashed(self):
        """Test a name exactly at the limit is not hashed."""
        assert node_name_or_hash(6, "node01") == "node01"
        assert node_name_or_hash(5, "node01") != "node0"

    def test_short_allowance_uses_minimum_hash(self):
        """Test the hash never shrinks below its minimum width."""
        assert len(node_name_or_hash(3, "node01")) == MIN_HASH_LENGTH
        assert len(node_name_or_hash(-7, "node01")) == MIN_HASH_LENGTH

    @pytest.mark.parametrize("suffix", ["-node-", "-node-inventory-"])
    def test_long_parent_stays_distinct_and_valid(self, suffix):
        """Test a parent that fills the budget still gives distinct, valid names."""
        parent = "production-cluster-security-scanning-config"
        assert len(parent) == 43

        a = node_resource_name(parent, suffix, "node01")
        b = node_resource_name(parent, suffix, "node02")

        assert a != b
        for name in (a, b):
            assert len(name) <= RESOURCE_NAME_MAX_LENGTH
            assert re.fullmatch(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?", name)
            assert name.startswith("production-cluster-security")

    def test_long_parent_is_deterministic(self):
        parent = "production-cluster-security-scanning-config"
        assert node_resource_name(parent, "-node-", "node01") == node_resource_name(parent, "-node-", "node01")

    def test_suffixes_differ_under_truncation(self):
        """Test the workload and inventory of one node do not share a name."""
        parent = "p" * 60
        assert node_resource_name(parent, "-node-", "n") != node_resource_name(parent, "-node-inventory-", "n")


@pytest.mark.unit
class TestScheduleMinute:
    def test_stable_and_in_range(self):
        """Test derived minutes are stable and valid."""
        minute = schedule_minute("clusterscan-client")
        assert minute == schedule_minute("clusterscan-client")
        assert 0 <= minute < 60
