"""
Add-on jobs synthesized from a network plan.

The iptables-manager add-on lets each deployment reach its own service
address in every AZ and blocks the rest of the services subnets. Both lists
follow subnet declaration order.
"""

from typing import Any

from sfoperators.constants import IPTABLES_MANAGER, IPTABLES_MANAGER_RELEASE
from sfoperators.errors import ConfigurationError
from sfoperators.planner.network import Networks


def firewall_lists(networks: Networks) -> tuple[str, str]:
    """
    Comma-separated allow and block lists for a planned network.

    Returns:
        (allow_ips_list, block_ips_list): the first static address of every
        subnet, and every subnet range

    Raises:
        ConfigurationError: If the plan has no static addresses
    """
    subnets = networks.all
    if not subnets or any(not subnet.static for subnet in subnets):
        raise ConfigurationError("Firewall lists need a network plan with a segment index")
    allow = ",".join(subnet.static[0] for subnet in subnets)
    block = ",".join(str(subnet.network) for subnet in subnets)
    return allow, block


def iptables_manager_addon(networks: Networks) -> dict[str, Any]:
    """Add-on definition for the iptables-manager job."""
    allow, block = firewall_lists(networks)
    return {
        "name": IPTABLES_MANAGER,
        "jobs": [{
            "name": IPTABLES_MANAGER,
            "release": IPTABLES_MANAGER_RELEASE,
            "properties": {
                "allow_ips_list": allow,
                "block_ips_list": block,
            },
        }],
    }
