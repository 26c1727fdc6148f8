#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

import netifaces
from ipaddress import IPv4Address

from .internal_types import *

def get_ipv4_broadcast_addresses_and_interfaces(include_loopback: bool=False) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[broadcast_address: str, interface_name: str] for the IPv4 interfaces of the
       local host that have a broadcast address. The result is sorted in a way that attempts to place the
       "preferred" network first in the list, according to the following scheme:
           1. Addresses on the default gateway interface precede all other addresses.
           2. Non-loopback addresses precede loopback addresses.
           3. Broadcast addresses that begin with 172. follow other addresses. This is a hack to
              deprioritize local docker networks.
       Duplicate broadcast addresses are only listed once."""
    result_with_priority: List[Tuple[int, str, str]] = []
    seen: Set[str] = set()
    default_gateway_ifname = get_default_ipv4_gateway()[1]
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        for addrinfo in ifinfo.get(netifaces.AF_INET, []):
            broadcast = addrinfo.get('broadcast')
            ip_str = addrinfo.get('addr')
            if not isinstance(broadcast, str) or not isinstance(ip_str, str):
                continue
            if broadcast in seen:
                continue
            if IPv4Address(ip_str).is_loopback:
                if not include_loopback:
                    continue
                priority = 3
            elif ifname == default_gateway_ifname:
                priority = 0
            elif broadcast.startswith('172.'):
                priority = 2
            else:
                priority = 1
            seen.add(broadcast)
            result_with_priority.append((priority, broadcast, ifname))
    return [ (broadcast, ifname) for _, broadcast, ifname in sorted(result_with_priority) ]

def get_ipv4_broadcast_addresses(include_loopback: bool=False) -> List[str]:
    """Returns a List[broadcast_address: str] for the IPv4 interfaces of the local host, in the
       order described by get_ipv4_broadcast_addresses_and_interfaces()."""
    return [ broadcast for broadcast, _ in get_ipv4_broadcast_addresses_and_interfaces(include_loopback=include_loopback) ]

def get_default_ipv4_gateway() -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IPv4 gateway,
       if any.
       returns (None, None) if there is no default gateway."""
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netifaces.AF_INET in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netifaces.AF_INET][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)
