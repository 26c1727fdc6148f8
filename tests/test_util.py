"""Tests for local interface enumeration, with netifaces mocked."""

from typing import Any
from unittest.mock import MagicMock, patch

from miio_protocol.util import (
    get_default_ipv4_gateway,
    get_ipv4_broadcast_addresses,
    get_ipv4_broadcast_addresses_and_interfaces,
)

AF_INET = 2

INTERFACES: dict[str, dict[int, list[dict[str, Any]]]] = {
    "lo": {AF_INET: [{"addr": "127.0.0.1", "netmask": "255.0.0.0", "broadcast": "127.255.255.255"}]},
    "docker0": {AF_INET: [{"addr": "172.17.0.1", "netmask": "255.255.0.0", "broadcast": "172.17.255.255"}]},
    "eth1": {AF_INET: [{"addr": "10.0.0.2", "netmask": "255.255.255.0", "broadcast": "10.0.0.255"}]},
    "wlan0": {AF_INET: [{"addr": "192.168.1.10", "netmask": "255.255.255.0", "broadcast": "192.168.1.255"}]},
    "tun0": {AF_INET: [{"addr": "10.8.0.2", "peer": "10.8.0.1"}]},
    "eth2": {AF_INET: [{"addr": "10.0.0.3", "netmask": "255.255.255.0", "broadcast": "10.0.0.255"}]},
}


def make_netifaces(gateways: dict[Any, Any]) -> MagicMock:
    mock = MagicMock()
    mock.AF_INET = AF_INET
    mock.interfaces.return_value = list(INTERFACES)
    mock.ifaddresses.side_effect = lambda name: INTERFACES[name]
    mock.gateways.return_value = gateways
    return mock


class TestBroadcastAddresses:
    """Tests for broadcast address ordering and filtering."""

    def test_default_gateway_interface_first(self) -> None:
        mock = make_netifaces({"default": {AF_INET: ("192.168.1.1", "wlan0")}})
        with patch("miio_protocol.util.netifaces", mock):
            assert get_ipv4_broadcast_addresses() == ["192.168.1.255", "10.0.0.255", "172.17.255.255"]

    def test_loopback_included_last_on_request(self) -> None:
        mock = make_netifaces({"default": {AF_INET: ("192.168.1.1", "wlan0")}})
        with patch("miio_protocol.util.netifaces", mock):
            result = get_ipv4_broadcast_addresses_and_interfaces(include_loopback=True)
        assert result[0] == ("192.168.1.255", "wlan0")
        assert result[-1] == ("127.255.255.255", "lo")
        assert ("10.0.0.255", "eth1") in result
        assert ("10.0.0.255", "eth2") not in result

    def test_no_default_gateway(self) -> None:
        mock = make_netifaces({})
        with patch("miio_protocol.util.netifaces", mock):
            assert get_default_ipv4_gateway() == (None, None)
            assert get_ipv4_broadcast_addresses() == ["10.0.0.255", "192.168.1.255", "172.17.255.255"]
