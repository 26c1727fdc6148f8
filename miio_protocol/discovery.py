#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MiioDiscovery -- A one-shot miIO discovery request that can:

  1. Broadcast a hello probe to a UDP broadcast address (typically 255.255.255.255:54321)
  2. Receive and decode hello responses from devices on the local network
  3. Collect and return one record per responding address after a fixed wait time

  The end of the wait time is the normal way a discovery finishes; there is no way
  to know in advance how many devices will answer.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import time

from .internal_types import *
from .pkg_logging import logger
from .constants import MIIO_PORT, MIIO_BROADCAST_ADDRESS, DEFAULT_DISCOVERY_TIMEOUT, EMPTY_TOKEN
from .exceptions import MiioPacketError
from .miio_packet import MiioPacket
from .miio_socket import MiioSocket
from .util import get_ipv4_broadcast_addresses

class MiioDiscoveredDevice:
    address: str
    """The IP address the hello response came from"""

    device_id: int
    """The device ID reported in the hello response"""

    stamp: int
    """The stamp reported in the hello response"""

    token: Optional[bytes]
    """The token carried in the hello response, if requested. Provisioned devices
       usually report all 0x00 or all 0xFF bytes here rather than their real token."""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the response was received, as returned by time.monotonic()."""

    def __init__(self, address: str, device_id: int, stamp: int, token: Optional[bytes]=None) -> None:
        self.address = address
        self.device_id = device_id
        self.stamp = stamp
        self.token = token
        self.monotonic_time = time.monotonic()

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = {
            "address": self.address,
            "device_id": self.device_id,
            "stamp": self.stamp,
          }
        if self.token is not None:
            result["token"] = self.token.hex()
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MiioDiscoveredDevice):
            return NotImplemented
        return (self.address, self.device_id, self.stamp, self.token) == (other.address, other.device_id, other.stamp, other.token)

    def __str__(self) -> str:
        return f"MiioDiscoveredDevice(address={self.address}, device_id=0x{self.device_id:08x}, stamp={self.stamp})"

    def __repr__(self) -> str:
        return str(self)

class MiioDiscovery(MiioSocket):
    """
    A single discovery window on its own broadcast-enabled socket. Use run() once,
    or the discover() convenience function.
    """

    address: str
    """The broadcast address the hello probe is sent to."""

    port: int
    """The UDP port the hello probe is sent to."""

    timeout: float
    """The length (in seconds) of the collection window."""

    include_token: bool
    """If True, the token field of each hello response is captured."""

    devices: Dict[str, MiioDiscoveredDevice]
    """Collected responses, indexed by source IP address. A later response replaces an earlier one."""

    _failure: Optional[Future[None]] = None

    def __init__(
            self,
            address: str=MIIO_BROADCAST_ADDRESS,
            port: int=MIIO_PORT,
            timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
            include_token: bool=False,
            bind_address: str="0.0.0.0",
          ) -> None:
        super().__init__(bind_address=bind_address, broadcast=True)
        self.address = address
        self.port = port
        self.timeout = timeout
        self.include_token = include_token
        self.devices = {}

    async def run(self) -> List[MiioDiscoveredDevice]:
        """Send the hello probe, collect responses for self.timeout seconds, and return them.

        Raises OSError if the socket cannot be bound, the probe cannot be sent, or the
        socket reports an error during the window. The socket is closed in every case.
        """
        self._failure = asyncio.get_running_loop().create_future()
        try:
            await self.open()
            logger.debug(f"Broadcasting hello to {self.address}:{self.port}, waiting {self.timeout} seconds")
            self.sendto(MiioPacket.create_hello(), (self.address, self.port))
            try:
                await asyncio.wait_for(asyncio.shield(self._failure), self.timeout)
            except asyncio.TimeoutError:
                pass
        finally:
            self.close()
            if not self._failure.done():
                self._failure.cancel()
        logger.debug(f"Discovery on {self.address} found {len(self.devices)} devices")
        return list(self.devices.values())

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Called for every datagram received during the discovery window."""
        try:
            packet = MiioPacket.decode(data, EMPTY_TOKEN)
            token = MiioPacket.extract_token(data) if self.include_token else None
        except MiioPacketError as e:
            logger.debug(f"Ignoring non-miIO response from {addr}: {e}")
            return
        device = MiioDiscoveredDevice(addr[0], packet.device_id, packet.stamp, token=token)
        logger.debug(f"Discovered {device}")
        self.devices[addr[0]] = device

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError; aborts the discovery."""
        super().error_received(exc)
        if self._failure is not None and not self._failure.done():
            self._failure.set_exception(exc)

    def __str__(self) -> str:
        return f"MiioDiscovery({self.address}:{self.port})"

async def discover(
        address: str=MIIO_BROADCAST_ADDRESS,
        port: int=MIIO_PORT,
        timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
        include_token: bool=False,
        bind_address: str="0.0.0.0",
      ) -> List[MiioDiscoveredDevice]:
    """Discover miIO devices on the local network by broadcasting a hello probe.

    Parameters:
        address:       The broadcast address to send the probe to. Defaults to 255.255.255.255.
        port:          The UDP port to send the probe to. Defaults to 54321.
        timeout:       The time (in seconds) to collect responses. Defaults to 5.0.
        include_token: If True, each record carries the token field of its hello response.
        bind_address:  The local IP address to bind to. Defaults to all interfaces.

    Returns one MiioDiscoveredDevice per responding address.
    """
    return await MiioDiscovery(
        address=address,
        port=port,
        timeout=timeout,
        include_token=include_token,
        bind_address=bind_address,
      ).run()

async def discover_all_interfaces(
        port: int=MIIO_PORT,
        timeout: float=DEFAULT_DISCOVERY_TIMEOUT,
        include_token: bool=False,
        include_loopback: bool=False,
      ) -> List[MiioDiscoveredDevice]:
    """Run discover() concurrently against the IPv4 broadcast address of every local interface,
       and merge the results by device address."""
    broadcast_addresses = get_ipv4_broadcast_addresses(include_loopback=include_loopback)
    if len(broadcast_addresses) == 0:
        broadcast_addresses = [MIIO_BROADCAST_ADDRESS]
    logger.debug(f"Discovering on broadcast addresses {broadcast_addresses}")
    results = await asyncio.gather(*[
        discover(address=address, port=port, timeout=timeout, include_token=include_token)
        for address in broadcast_addresses
      ])
    merged: Dict[str, MiioDiscoveredDevice] = {}
    for devices in results:
        for device in devices:
            existing = merged.get(device.address)
            if existing is None or device.monotonic_time >= existing.monotonic_time:
                merged[device.address] = device
    return list(merged.values())
