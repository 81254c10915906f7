"""
Network segment index - which segment of the services network a deployment owns.

The index is encoded in the deployment name,
``service-fabrik-<4 digit index>-<instance guid>`` (or
``service-fabrik_<subnet>-...`` for deployments on another network), so the
set of used indices is always recoverable from the director's deployment
list.
"""

import re
from typing import Any, Iterable, Mapping, Optional, Union

from sfoperators.constants import NETWORK_SEGMENT_LENGTH, SERVICE_FABRIK_PREFIX
from sfoperators.errors import ConfigurationError, InvalidInstanceIdError, NetworkExhaustedError
from sfoperators.planner.network import Segmentation, parse_cidr

INSTANCE_GUID = r"[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12}"
INSTANCE_GUID_PATTERN = re.compile(rf"^{INSTANCE_GUID}$")

DEPLOYMENT_NAME_PATTERN = re.compile(
    rf"^({re.escape(SERVICE_FABRIK_PREFIX)}(?:_([a-z0-9]+))?)"
    rf"-([0-9]{{{NETWORK_SEGMENT_LENGTH}}})"
    rf"-({INSTANCE_GUID})$"
)

DeploymentRef = Union[str, Mapping[str, Any]]


def adjust(index: Union[int, str], length: int = NETWORK_SEGMENT_LENGTH) -> str:
    """Left-pad an index with zeros."""
    return str(index).zfill(length)


def deployment_prefix(subnet: Optional[str] = None) -> str:
    return f"{SERVICE_FABRIK_PREFIX}_{subnet}" if subnet else SERVICE_FABRIK_PREFIX


def is_instance_guid(instance_id: str) -> bool:
    return bool(INSTANCE_GUID_PATTERN.match(instance_id))


def require_instance_guid(instance_id: str) -> str:
    """
    Raises:
        InvalidInstanceIdError: If the id is not a lowercase guid
    """
    if not is_instance_guid(instance_id):
        raise InvalidInstanceIdError(
            f"Instance id {instance_id!r} is not a lowercase guid and cannot name a deployment"
        )
    return instance_id


def deployment_name(index: int, instance_id: str, subnet: Optional[str] = None) -> str:
    """Build the deployment name for an index and instance."""
    return f"{deployment_prefix(subnet)}-{adjust(index)}-{instance_id}"


def parse_deployment_name(name: str) -> Optional[tuple[Optional[str], int, str]]:
    """
    Split a deployment name into (subnet, index, instance guid).

    Returns:
        None if the name was not generated by :func:`deployment_name`
    """
    match = DEPLOYMENT_NAME_PATTERN.match(name)
    if not match:
        return None
    return match.group(2), int(match.group(3)), match.group(4)


class NetworkSegmentIndex:
    """
    Capacity and free-index bookkeeping over deployment names.

    Args:
        network_specs: Infrastructure network specs
        segmentation: Segment layout
    """

    def __init__(self, network_specs: list[dict[str, Any]], segmentation: Segmentation):
        self.network_specs = network_specs
        self.segmentation = segmentation

    def capacity(self, subnet: Optional[str] = None) -> int:
        """
        Number of usable segments on the network named ``subnet`` (default: "default").

        An explicit positive ``segmentation.capacity`` wins over the derived value.

        Raises:
            ConfigurationError: If the network is unknown or has no subnets
        """
        if self.segmentation.capacity is not None:
            return self.segmentation.capacity
        name = subnet or "default"
        for spec in self.network_specs:
            if spec.get("name") == name:
                subnets = spec.get("subnets") or []
                if not subnets:
                    raise ConfigurationError(f"Network {name} has no subnets")
                return self.segmentation.capacity_of(parse_cidr(subnets[0]["range"]))
        raise ConfigurationError(f"Network {name} is not configured")

    def used_indices(self, deployments: Iterable[DeploymentRef], subnet: Optional[str] = None) -> list[int]:
        """Indices encoded in deployment names on the given network, in listing order."""
        used = []
        for deployment in deployments:
            name = deployment if isinstance(deployment, str) else deployment.get("name", "")
            parsed = parse_deployment_name(name)
            if parsed is not None and parsed[0] == subnet:
                used.append(parsed[1])
        return used

    def free_indices(self, deployments: Iterable[DeploymentRef], subnet: Optional[str] = None) -> list[int]:
        used = set(self.used_indices(deployments, subnet))
        return [index for index in range(self.capacity(subnet)) if index not in used]

    def find_free_index(self, deployments: Iterable[DeploymentRef], subnet: Optional[str] = None) -> int:
        """
        Lowest free index.

        Raises:
            NetworkExhaustedError: If every index is in use
        """
        free = self.free_indices(deployments, subnet)
        if not free:
            raise NetworkExhaustedError(
                f"No free network segment index on {subnet or 'default'} "
                f"(capacity {self.capacity(subnet)})"
            )
        return free[0]
