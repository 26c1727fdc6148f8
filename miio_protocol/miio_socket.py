#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MiioSocket -- An abstract base class for an asyncio UDP socket that can:

  1. Create and bind a single IPv4 datagram socket, optionally with broadcast enabled
  2. Send raw miIO packets to a unicast or broadcast address
  3. Deliver every received datagram and every socket error to the subclass

  Subclasses must implement datagram_received(). MiioTransport and MiioDiscovery
  are the two subclasses; each owns its socket exclusively.
"""

from __future__ import annotations

import asyncio
import socket
from abc import ABC, abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .exceptions import MiioError

class _MiioSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and MiioSocket."""
    miio_socket: MiioSocket
    transport: Optional[asyncio.DatagramTransport] = None

    def __init__(self, miio_socket: MiioSocket):
        self.miio_socket = miio_socket

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Called when a connection is made."""
        # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport, though they
        # implement the same interface.
        self.transport = transport # type: ignore[assignment]
        assert self.transport is not None
        self.miio_socket.connection_made(self.transport)

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        """Called when some datagram is received."""
        try:
            self.miio_socket.datagram_received(addr, data)
        except BaseException as e:
            logger.error(f"Unhandled exception processing datagram from {addr}: {e}")
            self.miio_socket.close()
            raise

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.miio_socket.error_received(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        transport = self.transport
        self.transport = None
        self.miio_socket.connection_lost(transport, exc)

class MiioSocket(ABC):
    """
    An abstract async miIO UDP socket. The low-level socket is created lazily by open()
    and released by close().
    """

    bind_address: str
    """The local IP address to bind to. "0.0.0.0" binds to all interfaces."""

    broadcast: bool
    """If True, SO_BROADCAST is enabled on the socket so that it can send to broadcast addresses."""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport that owns the socket while it is open."""

    def __init__(self, bind_address: str="0.0.0.0", broadcast: bool=False):
        self.bind_address = bind_address
        self.broadcast = broadcast

    @property
    def is_open(self) -> bool:
        return self.transport is not None

    @property
    def local_addr(self) -> Optional[HostAndPort]:
        """The local (ip_address, port) the socket is bound to, or None if it is not open."""
        if self.transport is None:
            return None
        sockname = self.transport.get_extra_info('sockname')
        return None if sockname is None else (sockname[0], sockname[1])

    def create_socket(self) -> socket.socket:
        """Creates and binds the low-level datagram socket. Subclasses can override to
           customize socket options."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self.broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_address, 0))
        except BaseException:
            sock.close()
            raise
        return sock

    async def open(self) -> None:
        """Creates the socket and attaches it to the running event loop. A no-op if already open."""
        if self.transport is not None:
            return
        loop = asyncio.get_running_loop()
        sock = self.create_socket()
        try:
            untyped_transport, protocol = await loop.create_datagram_endpoint(
                lambda: _MiioSocketProtocol(self),
                sock=sock
              )
        except BaseException:
            sock.close()
            raise
        # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport. The
        # following is a workaround to make mypy happy.
        transport: asyncio.DatagramTransport = untyped_transport # type: ignore[assignment]
        assert isinstance(protocol, _MiioSocketProtocol)
        self.transport = transport
        logger.debug(f"Opened {self} on {self.local_addr}")

    def close(self) -> None:
        """Closes the socket if it is open. Safe to call more than once."""
        transport = self.transport
        if transport is not None:
            self.transport = None
            try:
                transport.close()
            except Exception as e:
                logger.error(f"Error closing transport on {self}: {e}")

    def sendto(self, data: bytes, addr: HostAndPort) -> None:
        if self.transport is None:
            raise MiioError(f"Attempt to send on closed socket: {self}")
        logger.debug(f"Sending {len(data)}-byte packet via {self} to {addr}")
        self.transport.sendto(data, addr)

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        """Called when the socket has been attached to the event loop."""
        if self.transport is None:
            self.transport = transport

    @abstractmethod
    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Called for every received datagram. Must be overridden by subclasses, and must not raise
           on malformed input."""
        raise NotImplementedError()

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        logger.warning(f"Error received on {self}: {exc}")

    def connection_lost(self, transport: Optional[asyncio.DatagramTransport], exc: Optional[Exception]) -> None:
        """Called when the socket is closed, either by close() or by a fatal socket error."""
        logger.debug(f"Connection lost on {self}, exc={exc}")
        if transport is not None and transport is self.transport:
            self.transport = None

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.bind_address})"

    def __repr__(self) -> str:
        return str(self)
