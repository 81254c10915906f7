"""
Deployment manifest assembly.

ManifestPlanner turns the options of a deployment resource (instance groups
with their sizing, releases, stemcells, properties) plus a network segment
index into a director manifest. Static addresses come from the network plan,
and the iptables-manager add-on is attached when the services network is
manual.
"""

import copy
import logging
from typing import Any, Optional

from sfoperators.errors import ConfigurationError
from sfoperators.planner.addons import iptables_manager_addon
from sfoperators.planner.network import ManualNetwork, Networks, Segmentation

logger = logging.getLogger(__name__)

DEFAULT_UPDATE = {
    "canaries": 0,
    "max_in_flight": 50,
    "canary_watch_time": "1000-100000",
    "update_watch_time": "1000-100000",
    "serial": False,
}


class ManifestPlanner:
    """
    Build deployment manifests for one services network.

    Args:
        network_specs: Infrastructure network specs
        segmentation: Segment layout
        network_name: Network instance groups are placed on

    Usage:
        planner = ManifestPlanner(config.networks, config.segmentation)
        manifest = planner.build("service-fabrik-0003-<guid>", 3, options)
    """

    def __init__(
        self,
        network_specs: list[dict[str, Any]],
        segmentation: Optional[Segmentation] = None,
        network_name: str = "default",
    ):
        self.network_specs = network_specs
        self.segmentation = segmentation or Segmentation()
        self.network_name = network_name

    def plan_networks(self, index: int) -> Networks:
        """Network plan for one segment index, restricted to the services network."""
        specs = [spec for spec in self.network_specs if spec.get("name") == self.network_name]
        if not specs:
            raise ConfigurationError(f"Network {self.network_name} is not configured")
        return Networks(specs, index, self.segmentation)

    def build(self, deployment_name: str, index: int, options: dict[str, Any]) -> dict[str, Any]:
        """
        Assemble the manifest.

        Args:
            deployment_name: Name of the deployment
            index: Network segment index owned by the deployment
            options: Deployment options with ``instance_groups`` and optional
                ``releases``, ``stemcells``, ``update``, ``properties``,
                ``addons`` and ``tags``

        Returns:
            Manifest as a dict, ready to be serialized to YAML

        Raises:
            ConfigurationError: If the network plan cannot satisfy the sizing
        """
        networks = self.plan_networks(index)
        instance_groups = [
            self._instance_group(group, networks)
            for group in options.get("instance_groups", [])
        ]
        manifest: dict[str, Any] = {
            "name": deployment_name,
            "releases": copy.deepcopy(options.get("releases", [])),
            "stemcells": copy.deepcopy(options.get("stemcells", [])),
            "update": {**DEFAULT_UPDATE, **options.get("update", {})},
            "networks": networks.to_manifest(),
            "instance_groups": instance_groups,
        }
        addons = copy.deepcopy(options.get("addons", []))
        if isinstance(networks[self.network_name], ManualNetwork):
            addons.append(iptables_manager_addon(networks))
        if addons:
            manifest["addons"] = addons
        if options.get("properties"):
            manifest["properties"] = copy.deepcopy(options["properties"])
        if options.get("tags"):
            manifest["tags"] = dict(options["tags"])
        logger.debug(
            f"Planned manifest {deployment_name} with {len(instance_groups)} instance groups",
            extra={"metadata": {"index": index}},
        )
        return manifest

    def _instance_group(self, group: dict[str, Any], networks: Networks) -> dict[str, Any]:
        if "name" not in group:
            raise ConfigurationError(f"Instance group without name: {group!r}")
        instances = int(group.get("instances", 1))
        azs = list(group.get("azs", []))
        result = {
            "name": group["name"],
            "instances": instances,
            "azs": azs,
            "jobs": copy.deepcopy(group.get("jobs", [])),
            "networks": [{
                "name": self.network_name,
                "static_ips": networks.static_ips(self.network_name, azs, instances),
            }],
        }
        for key in ("vm_type", "stemcell", "persistent_disk_type", "properties"):
            if key in group:
                result[key] = copy.deepcopy(group[key])
        if not result["networks"][0]["static_ips"]:
            del result["networks"][0]["static_ips"]
        return result
