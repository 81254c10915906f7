"""Tests for add-on jobs derived from network plans."""

import pytest

from sfoperators.errors import ConfigurationError
from sfoperators.planner import Networks, Segmentation, firewall_lists, iptables_manager_addon

SPECS = [{
    "name": "default",
    "subnets": [
        {"range": "10.11.0.0/24", "az": "z1"},
        {"range": "10.11.1.0/24", "az": "z2"},
        {"range": "10.11.2.0/24", "az": "z3"},
    ],
}]


class TestFirewallLists:
    def test_lists_follow_az_order(self):
        networks = Networks(SPECS, index=1, segmentation=Segmentation(offset=1, size=8))
        allow, block = firewall_lists(networks)
        assert allow == "10.11.0.16,10.11.1.16,10.11.2.16"
        assert block == "10.11.0.0/24,10.11.1.0/24,10.11.2.0/24"

    def test_lists_are_stable(self):
        plans = [firewall_lists(Networks(SPECS, index=4, segmentation=Segmentation(offset=1, size=8))) for _ in range(3)]
        assert plans[0] == plans[1] == plans[2]

    def test_requires_segment_index(self):
        with pytest.raises(ConfigurationError):
            firewall_lists(Networks(SPECS))


def test_iptables_manager_addon():
    networks = Networks(SPECS[:1], index=0, segmentation=Segmentation(offset=1, size=8))
    addon = iptables_manager_addon(networks)
    assert addon["name"] == "iptables-manager"
    job = addon["jobs"][0]
    assert job["name"] == "iptables-manager"
    assert job["release"] == "service-fabrik"
    assert job["properties"] == {
        "allow_ips_list": "10.11.0.8,10.11.1.8,10.11.2.8",
        "block_ips_list": "10.11.0.0/24,10.11.1.0/24,10.11.2.0/24",
    }
