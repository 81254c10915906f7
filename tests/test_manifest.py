"""Tests for deployment manifest assembly."""

import pytest

from sfoperators.errors import ConfigurationError
from sfoperators.planner import ManifestPlanner, Segmentation
from sfoperators.planner.manifest import DEFAULT_UPDATE

NAME = "service-fabrik-0003-b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"

OPTIONS = {
    "releases": [{"name": "redis", "version": "1.0"}],
    "stemcells": [{"alias": "default", "os": "ubuntu-jammy", "version": "latest"}],
    "instance_groups": [{
        "name": "redis",
        "instances": 2,
        "azs": ["z1", "z2"],
        "vm_type": "small",
        "jobs": [{"name": "redis-server", "release": "redis"}],
    }],
    "properties": {"redis": {"maxmemory": "1gb"}},
    "update": {"canaries": 1},
}


@pytest.fixture
def planner(networks):
    return ManifestPlanner(networks, Segmentation(offset=1, size=8))


class TestBuild:
    def test_manifest_layout(self, planner):
        manifest = planner.build(NAME, 3, OPTIONS)
        assert manifest["name"] == NAME
        assert manifest["releases"] == OPTIONS["releases"]
        assert manifest["update"] == {**DEFAULT_UPDATE, "canaries": 1}
        assert manifest["properties"] == {"redis": {"maxmemory": "1gb"}}
        assert [n["name"] for n in manifest["networks"]] == ["default"]

    def test_instance_group_static_ips(self, planner):
        group = planner.build(NAME, 3, OPTIONS)["instance_groups"][0]
        assert group["vm_type"] == "small"
        assert group["networks"] == [{"name": "default", "static_ips": ["10.11.0.32", "10.11.1.32"]}]

    def test_iptables_addon_attached(self, planner):
        addons = planner.build(NAME, 3, OPTIONS)["addons"]
        assert addons[-1]["name"] == "iptables-manager"
        assert addons[-1]["jobs"][0]["properties"]["allow_ips_list"] == "10.11.0.32,10.11.1.32"

    def test_subnets_carry_reserved_and_static(self, planner):
        subnet = planner.build(NAME, 3, OPTIONS)["networks"][0]["subnets"][0]
        assert subnet["static"][0] == "10.11.0.32"
        assert subnet["reserved"] == ["10.11.0.2 - 10.11.0.31", "10.11.0.40 - 10.11.0.254"]
        assert subnet["dns"] == ["10.11.0.2"]

    def test_options_are_not_mutated(self, planner):
        options = {"instance_groups": [{"name": "a"}], "addons": [{"name": "custom"}]}
        planner.build(NAME, 0, options)
        assert options["addons"] == [{"name": "custom"}]

    def test_same_index_same_manifest(self, planner):
        assert planner.build(NAME, 3, OPTIONS) == planner.build(NAME, 3, OPTIONS)

    def test_unknown_services_network(self, networks):
        with pytest.raises(ConfigurationError, match="not configured"):
            ManifestPlanner(networks, network_name="services").build(NAME, 0, OPTIONS)

    def test_too_many_instances(self, networks):
        planner = ManifestPlanner(networks, Segmentation(offset=1, size=2))
        options = {"instance_groups": [{"name": "big", "instances": 3, "azs": ["z1"]}]}
        with pytest.raises(ConfigurationError, match="not enough"):
            planner.build(NAME, 0, options)

    def test_instance_group_without_name(self, planner):
        with pytest.raises(ConfigurationError, match="without name"):
            planner.build(NAME, 0, {"instance_groups": [{"instances": 1}]})
