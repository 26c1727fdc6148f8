#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Reverse hostname lookup of a device address."""

from __future__ import annotations

import asyncio

from .internal_types import *
from .pkg_logging import logger
from .constants import MIIO_PORT
from .exceptions import DnsLookupError

DnsLookupService = Callable[[str, int], Awaitable[Tuple[str, str]]]
"""An async callable taking (address, port) and returning (hostname, service)."""

class DnsLookupResult:
    address: str
    """The IP address that was looked up"""

    port: int
    """The port used for the lookup"""

    hostname: Optional[str]
    """The resolved hostname, or None if the lookup failed"""

    service: Optional[str]
    """The resolved service name, or None if the lookup failed"""

    error: Optional[DnsLookupError]
    """The lookup error, or None if the lookup succeeded. The underlying cause is error.__cause__."""

    def __init__(
            self,
            address: str,
            port: int,
            hostname: Optional[str]=None,
            service: Optional[str]=None,
            error: Optional[DnsLookupError]=None
          ) -> None:
        self.address = address
        self.port = port
        self.hostname = hostname
        self.service = service
        self.error = error

    def to_jsonable(self) -> JsonableDict:
        return {
            "address": self.address,
            "port": self.port,
            "hostname": self.hostname,
            "service": self.service,
            "error": None if self.error is None else str(self.error),
            "cause": None if self.error is None or self.error.__cause__ is None else str(self.error.__cause__),
          }

    def __str__(self) -> str:
        return f"DnsLookupResult({self.address}:{self.port} -> hostname={self.hostname}, service={self.service}, error={self.error})"

    def __repr__(self) -> str:
        return str(self)

async def getnameinfo_lookup_service(address: str, port: int) -> Tuple[str, str]:
    """The default DnsLookupService, using the event loop's getnameinfo()."""
    loop = asyncio.get_running_loop()
    hostname, service = await loop.getnameinfo((address, port))
    return (hostname, service)

async def lookup_device_hostname(
        address: str,
        port: int=MIIO_PORT,
        lookup_service: Optional[DnsLookupService]=None
      ) -> DnsLookupResult:
    """Resolve the hostname of a device address via reverse DNS.

    Never raises for a failed lookup; the failure is reported in the result's error field.
    """
    if lookup_service is None:
        lookup_service = getnameinfo_lookup_service
    try:
        hostname, service = await lookup_service(address, port)
    except Exception as e:
        logger.debug(f"Reverse lookup of {address}:{port} failed: {e}")
        error = DnsLookupError(address, port)
        error.__cause__ = e
        return DnsLookupResult(address, port, error=error)
    return DnsLookupResult(address, port, hostname=hostname, service=service)
