"""
Network and manifest planning.

- network: CIDR parsing, segment layout, static and reserved addresses
- segment_index: capacity and free index over deployment names
- addons: iptables-manager allow/block lists
- manifest: deployment manifest assembly
"""

from sfoperators.planner.addons import firewall_lists, iptables_manager_addon
from sfoperators.planner.manifest import ManifestPlanner
from sfoperators.planner.network import (
    DynamicNetwork,
    ManualNetwork,
    Networks,
    NetworkType,
    Segmentation,
    Subnet,
    parse_cidr,
)
from sfoperators.planner.segment_index import (
    NetworkSegmentIndex,
    adjust,
    deployment_name,
    is_instance_guid,
    parse_deployment_name,
    require_instance_guid,
)

__all__ = [
    "DynamicNetwork",
    "ManifestPlanner",
    "ManualNetwork",
    "NetworkSegmentIndex",
    "NetworkType",
    "Networks",
    "Segmentation",
    "Subnet",
    "adjust",
    "deployment_name",
    "firewall_lists",
    "iptables_manager_addon",
    "is_instance_guid",
    "parse_cidr",
    "parse_deployment_name",
    "require_instance_guid",
]
