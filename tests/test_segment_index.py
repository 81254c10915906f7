"""Tests for network segment index bookkeeping."""

import pytest

from sfoperators.errors import ConfigurationError, NetworkExhaustedError
from sfoperators.planner import NetworkSegmentIndex, Segmentation, adjust, deployment_name, parse_deployment_name

GUID_A = "b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"
GUID_B = "0e0b8a3a-1c0e-4bfa-8d4d-0f2f8b1c5a11"

NETWORKS = [
    {"name": "default", "subnets": [{"range": "10.11.0.0/20", "az": "z1"}]},
    {"name": "small", "subnets": [{"range": "10.12.0.0/24", "az": "z1"}]},
    {"name": "tiny", "subnets": [{"range": "10.13.0.0/29", "az": "z1"}]},
    {"name": "empty", "subnets": []},
]


def _make_index(**segmentation) -> NetworkSegmentIndex:
    return NetworkSegmentIndex(NETWORKS, Segmentation(**segmentation))


class TestNames:
    def test_adjust(self):
        assert adjust(7) == "0007"
        assert adjust("12", 6) == "000012"
        assert adjust(12345) == "12345"

    def test_deployment_name(self):
        assert deployment_name(3, GUID_A) == f"service-fabrik-0003-{GUID_A}"
        assert deployment_name(3, GUID_A, "small") == f"service-fabrik_small-0003-{GUID_A}"

    def test_parse(self):
        assert parse_deployment_name(f"service-fabrik-0042-{GUID_A}") == (None, 42, GUID_A)
        assert parse_deployment_name(f"service-fabrik_small-0001-{GUID_B}") == ("small", 1, GUID_B)

    @pytest.mark.parametrize("name", [
        "redis-cluster",
        f"service-fabrik-42-{GUID_A}",
        "service-fabrik-0042-not-a-guid",
    ])
    def test_parse_foreign_names(self, name):
        assert parse_deployment_name(name) is None


class TestCapacity:
    def test_explicit_capacity_wins(self):
        assert _make_index(offset=1, size=2, capacity=1235).capacity() == 1235

    def test_derived_from_default_network(self):
        assert _make_index(offset=1, size=2).capacity() == 2046

    def test_derived_from_named_network(self):
        assert _make_index(offset=1, size=2).capacity("small") == 126
        assert _make_index(offset=2, size=2).capacity("tiny") == 1

    def test_unknown_network(self):
        with pytest.raises(ConfigurationError, match="not configured"):
            _make_index().capacity("nowhere")

    def test_network_without_subnets(self):
        with pytest.raises(ConfigurationError, match="no subnets"):
            _make_index().capacity("empty")


class TestFreeIndex:
    DEPLOYMENTS = [
        f"service-fabrik-0000-{GUID_A}",
        {"name": f"service-fabrik-0002-{GUID_B}"},
        f"service-fabrik_small-0001-{GUID_A}",
        "redis-cluster",
    ]

    def test_used_indices(self):
        index = _make_index(offset=1, size=2)
        assert index.used_indices(self.DEPLOYMENTS) == [0, 2]
        assert index.used_indices(self.DEPLOYMENTS, "small") == [1]

    def test_free_indices(self):
        assert len(_make_index(offset=1, size=2, capacity=1235).free_indices(self.DEPLOYMENTS[:1])) == 1234
        assert len(_make_index(offset=1, size=2).free_indices(self.DEPLOYMENTS[:1])) == 2045

    def test_lowest_free_index(self):
        index = _make_index(offset=1, size=2)
        assert index.find_free_index([]) == 0
        assert index.find_free_index(self.DEPLOYMENTS) == 1
        assert index.find_free_index(self.DEPLOYMENTS, "small") == 0

    def test_exhausted(self):
        index = _make_index(offset=2, size=2)
        with pytest.raises(NetworkExhaustedError, match="capacity 1"):
            index.find_free_index([f"service-fabrik_tiny-0000-{GUID_A}"], "tiny")
