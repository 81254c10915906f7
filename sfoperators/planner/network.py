"""
Network plan for deployment manifests.

A manual network is partitioned into fixed-size segments. Segment ``i`` of
a subnet belongs to the deployment with network segment index ``i``:

    [network | gateway | system segments (offset) | segment 0 | segment 1 | ... | last segment | broadcast]

For one index the plan yields, per subnet:
- static: the addresses of that deployment's segment
- reserved: every other host address except the gateway, so the director
  never hands out an address belonging to another deployment

Plans are recomputed on demand and never stored. The same range, offset,
size and index always produce identical static and reserved lists.
"""

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional, Union

from sfoperators.errors import ConfigurationError


IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class NetworkType(str, Enum):
    MANUAL = "manual"
    DYNAMIC = "dynamic"


def parse_cidr(cidr: str) -> IPNetwork:
    """
    Parse a CIDR range, tolerating host bits (``127.0.0.1/25``).

    Raises:
        ConfigurationError: If the range is not valid CIDR
    """
    try:
        return ipaddress.ip_network(cidr, strict=False)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid CIDR range {cidr!r}: {e}") from e


@dataclass(frozen=True)
class Segmentation:
    """
    Segment layout of manual networks.

    Attributes:
        offset: Number of leading segments kept for the system
        size: Addresses per segment
        capacity: Explicit number of usable segments; derived from the range when unset
    """
    offset: int = 1
    size: int = 2
    capacity: Optional[int] = None

    def __post_init__(self):
        if self.offset < 0:
            raise ConfigurationError(f"Segmentation offset must be >= 0, got {self.offset}")
        if self.size < 1:
            raise ConfigurationError(f"Segmentation size must be >= 1, got {self.size}")

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Segmentation":
        data = data or {}
        capacity = data.get("capacity")
        try:
            return cls(
                offset=int(data.get("offset", 1)),
                size=int(data.get("size", 2)),
                capacity=int(capacity) if capacity is not None and int(capacity) > 0 else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid segmentation settings {data!r}: {e}") from e

    def capacity_of(self, network: IPNetwork) -> int:
        """Usable segments in a network: all segments minus system and last ones."""
        if self.capacity is not None:
            return self.capacity
        return network.num_addresses // self.size - self.offset - 1


def _range_str(first: IPAddress, last: IPAddress) -> str:
    return str(first) if first == last else f"{first} - {last}"


class Subnet:
    """
    One subnet of a manual network, in one availability zone.

    Args:
        range: CIDR range of the subnet
        az: Availability zone
        gateway: Gateway address; defaults to the first host address
        dns: DNS servers
        cloud_properties: IaaS specific settings passed through
        index: Network segment index of the deployment; no static or
            reserved addresses are computed without one
        segmentation: Segment layout
    """

    def __init__(
        self,
        range: str,
        az: Optional[str] = None,
        gateway: Optional[str] = None,
        dns: Optional[list[str]] = None,
        cloud_properties: Optional[dict[str, Any]] = None,
        index: Optional[int] = None,
        segmentation: Optional[Segmentation] = None,
    ):
        self.range = range
        self.network = parse_cidr(range)
        self.az = az
        self.dns = list(dns or [])
        self.cloud_properties = dict(cloud_properties or {})
        self.segmentation = segmentation or Segmentation()
        self.index = index
        if gateway is None:
            self.gateway = self.network.network_address + 1
        else:
            try:
                self.gateway = ipaddress.ip_address(gateway)
            except ValueError as e:
                raise ConfigurationError(f"Invalid gateway {gateway!r} for {range}: {e}") from e
            if self.gateway not in self.network:
                raise ConfigurationError(f"Gateway {gateway} is outside of {range}")
        self.static: list[str] = []
        self.reserved: list[str] = []
        if index is not None:
            self._assign_segment(index)

    @classmethod
    def from_spec(cls, spec: dict[str, Any], index: Optional[int], segmentation: Segmentation) -> "Subnet":
        if "range" not in spec:
            raise ConfigurationError(f"Subnet without range: {spec!r}")
        return cls(
            range=spec["range"],
            az=spec.get("az"),
            gateway=spec.get("gateway"),
            dns=spec.get("dns"),
            cloud_properties=spec.get("cloud_properties"),
            index=index,
            segmentation=segmentation,
        )

    @property
    def network_address(self) -> IPAddress:
        return self.network.network_address

    @property
    def broadcast_address(self) -> IPAddress:
        return self.network.broadcast_address

    @property
    def num_addresses(self) -> int:
        return self.network.num_addresses

    @property
    def capacity(self) -> int:
        return self.segmentation.capacity_of(self.network)

    def segment(self, index: int) -> tuple[IPAddress, IPAddress]:
        """First and last address of the segment for an index."""
        size = self.segmentation.size
        first = self.network_address + (self.segmentation.offset + index) * size
        return first, first + (size - 1)

    def _assign_segment(self, index: int) -> None:
        if index < 0:
            raise ConfigurationError(f"Network segment index must be >= 0, got {index}")
        start = (self.segmentation.offset + index) * self.segmentation.size
        if start == 0 or start + self.segmentation.size >= self.num_addresses:
            raise ConfigurationError(f"Network segment {index} does not fit into {self.range}")
        first, last = self.segment(index)
        if first <= self.gateway <= last:
            raise ConfigurationError(
                f"Network segment {index} ({first} - {last}) overlaps gateway {self.gateway}"
            )
        self.static = [str(first + k) for k in range(self.segmentation.size)]
        self.reserved = (
            self._span(self.network_address + 1, first - 1)
            + self._span(last + 1, self.broadcast_address - 1)
        )

    def _span(self, start: IPAddress, end: IPAddress) -> list[str]:
        """Range strings covering start..end, skipping the gateway."""
        if start > end:
            return []
        if start <= self.gateway <= end:
            return self._span(start, self.gateway - 1) + self._span(self.gateway + 1, end)
        return [_range_str(start, end)]

    def system_reserved(self) -> list[str]:
        """Addresses kept for the system: the leading offset segments and the last segment."""
        size = self.segmentation.size
        leading = [self.network_address + k for k in range(self.segmentation.offset * size)]
        tail_start = (self.capacity + self.segmentation.offset) * size
        tail = [
            self.network_address + k
            for k in range(tail_start, tail_start + size)
            if k < self.num_addresses
        ]
        return [str(address) for address in leading + tail]

    def to_manifest(self) -> dict[str, Any]:
        result: dict[str, Any] = {"range": str(self.network), "gateway": str(self.gateway)}
        if self.dns:
            result["dns"] = list(self.dns)
        if self.reserved:
            result["reserved"] = list(self.reserved)
        if self.static:
            result["static"] = list(self.static)
        if self.az:
            result["az"] = self.az
        result["cloud_properties"] = dict(self.cloud_properties)
        return result

    def __repr__(self) -> str:
        return f"Subnet(range={self.range}, az={self.az}, index={self.index})"


class ManualNetwork:
    """Network with explicit ranges and static/reserved bookkeeping."""

    type = NetworkType.MANUAL

    def __init__(self, name: str, subnets: list[Subnet]):
        self.name = name
        self.subnets = subnets

    def subnet_for(self, az: Optional[str]) -> Optional[Subnet]:
        for subnet in self.subnets:
            if subnet.az == az:
                return subnet
        return None

    def to_manifest(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "subnets": [subnet.to_manifest() for subnet in self.subnets],
        }


class DynamicNetwork:
    """Network whose addresses are assigned by the IaaS."""

    type = NetworkType.DYNAMIC

    def __init__(self, name: str, subnets: list[dict[str, Any]]):
        self.name = name
        self.subnets = [
            {k: v for k, v in subnet.items() if k in ("az", "dns", "cloud_properties")}
            for subnet in subnets
        ]

    def to_manifest(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "type": self.type.value}
        if self.subnets:
            result["subnets"] = [dict(subnet) for subnet in self.subnets]
        return result


Network = Union[ManualNetwork, DynamicNetwork]


class Networks:
    """
    Ordered network plan for one deployment.

    Args:
        specs: Network specs ``{name, type, subnets}``; type defaults to manual
        index: Network segment index of the deployment
        segmentation: Segment layout

    Raises:
        ConfigurationError: For unsupported network types or invalid ranges
    """

    def __init__(
        self,
        specs: list[dict[str, Any]],
        index: Optional[int] = None,
        segmentation: Optional[Segmentation] = None,
    ):
        self.index = index
        self.segmentation = segmentation or Segmentation()
        self.networks: list[Network] = [self._build(spec) for spec in specs]

    def _build(self, spec: dict[str, Any]) -> Network:
        name = spec.get("name")
        if not name:
            raise ConfigurationError(f"Network without name: {spec!r}")
        raw_type = spec.get("type", NetworkType.MANUAL.value)
        try:
            network_type = NetworkType(raw_type)
        except ValueError:
            raise ConfigurationError(f"Unsupported network type {raw_type!r} for network {name}") from None
        subnets = spec.get("subnets", [])
        if network_type == NetworkType.DYNAMIC:
            return DynamicNetwork(name, subnets)
        return ManualNetwork(
            name,
            [Subnet.from_spec(subnet, self.index, self.segmentation) for subnet in subnets],
        )

    def __getitem__(self, name: str) -> Network:
        for network in self.networks:
            if network.name == name:
                return network
        raise KeyError(f"No network named {name}. Known: {[n.name for n in self.networks]}")

    def __iter__(self) -> Iterator[Network]:
        return iter(self.networks)

    @property
    def manual(self) -> list[ManualNetwork]:
        return [n for n in self.networks if isinstance(n, ManualNetwork)]

    @property
    def all(self) -> list[Subnet]:
        """Every subnet of every manual network, in declaration order."""
        return [subnet for network in self.manual for subnet in network.subnets]

    def static_ips(self, network_name: str, azs: list[Optional[str]], count: int) -> list[str]:
        """
        Static addresses for ``count`` instances spread round-robin over AZs.

        Raises:
            ConfigurationError: If the segments cannot hold ``count`` instances
        """
        network = self[network_name]
        if not isinstance(network, ManualNetwork):
            return []
        subnets = [network.subnet_for(az) for az in azs] if azs else list(network.subnets)
        if not subnets or any(subnet is None for subnet in subnets):
            raise ConfigurationError(f"Network {network_name} has no subnet for AZs {azs}")
        per_subnet: dict[int, int] = {}
        ips = []
        for n in range(count):
            subnet = subnets[n % len(subnets)]
            position = per_subnet.get(id(subnet), 0)
            if position >= len(subnet.static):
                raise ConfigurationError(
                    f"Segment of {subnet.range} has {len(subnet.static)} addresses, "
                    f"not enough for {count} instances"
                )
            ips.append(subnet.static[position])
            per_subnet[id(subnet)] = position + 1
        return ips

    def to_manifest(self) -> list[dict[str, Any]]:
        return [network.to_manifest() for network in self.networks]
