#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MiioDevice -- A device session bound to one address, token and (optionally) model.

This is the surface that device-specific code builds on: connect() performs the
handshake, call() sends a raw miIO command, and get_properties() issues the common
"get_prop" query. Subclass it to add device-specific commands.
"""

from __future__ import annotations

from .internal_types import *
from .constants import MIIO_PORT, DEFAULT_TIMEOUT
from .miio_crypto import token_from_hex
from .transport import MiioTransport
from .dns import DnsLookupResult, DnsLookupService, lookup_device_hostname

class MiioDeviceInfo(NamedTuple):
    address: str
    device_id: int
    model: Optional[str] = None

class MiioDevice:
    transport: MiioTransport
    """The transport that carries this device's commands."""

    address: str
    """The IP address of the device."""

    model: Optional[str]
    """The device model identifier, e.g. "yeelink.light.bslamp2", if known."""

    def __init__(
            self,
            address: str,
            token: Union[bytes, str],
            model: Optional[str]=None,
            timeout: float=DEFAULT_TIMEOUT,
            port: int=MIIO_PORT,
          ) -> None:
        """Create a device session.

        Parameters:
            address: The IP address of the device.
            token:   The device token, as 16 bytes or a 32-character hex string.
            model:   The device model identifier, if known.
            timeout: The time (in seconds) to wait for a handshake or command response.
            port:    The UDP port of the device. Defaults to 54321.
        """
        if isinstance(token, str):
            token = token_from_hex(token)
        self.transport = MiioTransport(address, token, timeout=timeout, port=port)
        self.address = address
        self.model = model

    async def connect(self) -> MiioDeviceInfo:
        """Connect to the device by performing the handshake."""
        device_id, _ = await self.transport.handshake()
        return MiioDeviceInfo(self.address, device_id, self.model)

    async def call(self, method: str, params: Optional[Jsonable]=None) -> Jsonable:
        """Send a raw miIO command and return its result."""
        return await self.transport.send(method, params)

    async def get_properties(self, props: Sequence[str]) -> Jsonable:
        """Query device properties with the "get_prop" command."""
        return await self.call('get_prop', list(props))

    async def lookup_hostname(
            self,
            port: int=MIIO_PORT,
            lookup_service: Optional[DnsLookupService]=None
          ) -> DnsLookupResult:
        """Resolve the device hostname via reverse DNS lookup."""
        return await lookup_device_hostname(self.address, port=port, lookup_service=lookup_service)

    def destroy(self) -> None:
        """Disconnect and clean up resources."""
        self.transport.destroy()

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.address}, model={self.model})"

    def __repr__(self) -> str:
        return str(self)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.destroy()
        return False
