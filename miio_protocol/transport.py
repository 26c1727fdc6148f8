#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MiioTransport -- A unicast miIO session with a single device that can:

  1. Perform the hello handshake to learn the device ID and stamp
  2. Send encrypted JSON-RPC commands and correlate responses by message ID
  3. Time out individual commands without affecting other in-flight commands
  4. Repeat the handshake automatically when it is more than a minute old

  Usage:
      async with MiioTransport('192.168.1.50', token) as transport:
          await transport.handshake()
          result = await transport.send('get_prop', ['power'])
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import time
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import MIIO_PORT, DEFAULT_TIMEOUT, HANDSHAKE_MAX_AGE, TOKEN_SIZE
from .exceptions import (
    InvalidTokenLengthError,
    MiioPacketError,
    HandshakeTimeoutError,
    CommandTimeoutError,
    MiioRemoteError,
    TransportDestroyedError,
  )
from .miio_packet import MiioPacket
from .miio_socket import MiioSocket

STAMP_MASK = 0xFFFFFFFF

class TransportState(Enum):
    UNBOUND = 'unbound'
    """No socket exists."""
    BOUND = 'bound'
    """The socket exists but no handshake has completed."""
    READY = 'ready'
    """At least one handshake has completed."""

class HandshakeResult(NamedTuple):
    device_id: int
    stamp: int

MiioErrorHandler = Callable[[Exception], None]
"""A callback for socket errors reported while the transport is open."""

class _PendingRequest:
    """Bookkeeping for one command awaiting its response."""
    msg_id: int
    method: str
    future: Future[Jsonable]
    timer: asyncio.TimerHandle

    def __init__(self, msg_id: int, method: str, future: Future[Jsonable], timer: asyncio.TimerHandle):
        self.msg_id = msg_id
        self.method = method
        self.future = future
        self.timer = timer

class MiioTransport(MiioSocket):
    """
    A UDP transport bound to one device address and token.

    The socket is created lazily on the first handshake. Responses are matched to
    commands strictly by JSON-RPC id, so concurrent send() calls may complete in any
    order. Datagrams that cannot be decoded, or that carry an unknown id, are dropped.
    """

    address: str
    """The IP address of the device."""

    port: int
    """The UDP port of the device."""

    token: bytes
    """The 16-byte device token."""

    timeout: float
    """The time (in seconds) to wait for a handshake or command response."""

    handshake_max_age: float
    """The age (in seconds) after which send() repeats the handshake first."""

    device_id: int = 0
    """The device ID learned from the last handshake. 0 until then."""

    stamp: int = 0
    """The stamp counter, learned from the handshake and advanced for each command."""

    last_handshake: Optional[float] = None
    """The time.monotonic() value at which the last handshake completed, or None."""

    pending: Dict[int, _PendingRequest]
    """Commands awaiting a response, indexed by message ID."""

    error_handlers: Dict[int, MiioErrorHandler]
    """Callbacks invoked with socket errors, indexed by ID number."""

    i_next_error_handler: int = 0

    _next_msg_id: int = 1
    _destroyed: bool = False
    _hello_waiter: Optional[Future[bytes]] = None
    _handshake_task: Optional[asyncio.Task[HandshakeResult]] = None

    def __init__(
            self,
            address: str,
            token: bytes,
            timeout: float=DEFAULT_TIMEOUT,
            port: int=MIIO_PORT,
            handshake_max_age: float=HANDSHAKE_MAX_AGE,
            bind_address: str="0.0.0.0",
          ) -> None:
        super().__init__(bind_address=bind_address)
        if len(token) != TOKEN_SIZE:
            raise InvalidTokenLengthError(len(token))
        self.address = address
        self.token = bytes(token)
        self.timeout = timeout
        self.port = port
        self.handshake_max_age = handshake_max_age
        self.pending = {}
        self.error_handlers = {}

    @property
    def state(self) -> TransportState:
        if not self.is_open:
            return TransportState.UNBOUND
        if self.last_handshake is None:
            return TransportState.BOUND
        return TransportState.READY

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def handshake_is_stale(self) -> bool:
        """True if no handshake has completed, or the last one is older than handshake_max_age."""
        return self.last_handshake is None or time.monotonic() - self.last_handshake > self.handshake_max_age

    def add_error_handler(self, handler: MiioErrorHandler) -> int:
        """Adds a handler to be called when the socket reports an error."""
        i = self.i_next_error_handler
        self.i_next_error_handler += 1
        self.error_handlers[i] = handler
        return i

    def remove_error_handler(self, i: int) -> None:
        """Removes a previously added error handler."""
        del self.error_handlers[i]

    def _check_not_destroyed(self) -> None:
        if self._destroyed:
            raise TransportDestroyedError(f"Transport to {self.address} has been destroyed")

    async def handshake(self) -> HandshakeResult:
        """Send a hello probe to the device and wait for its hello response.

        Stores the device ID and stamp from the response. If a handshake is already in
        progress, waits for that one instead of sending another probe.

        Raises:
            HandshakeTimeoutError:   no response within self.timeout seconds
            MiioPacketError:         the response could not be decoded
            TransportDestroyedError: destroy() was called
        """
        self._check_not_destroyed()
        task = self._handshake_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._run_handshake())
            task.add_done_callback(self._on_handshake_done)
            self._handshake_task = task
        return await asyncio.shield(task)

    def _on_handshake_done(self, task: asyncio.Task[HandshakeResult]) -> None:
        # collects the result even when every caller was cancelled
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Handshake with {self.address} failed: {exc}")

    async def _run_handshake(self) -> HandshakeResult:
        await self.open()
        if self._destroyed:
            self.close()
            self._check_not_destroyed()
        waiter: Future[bytes] = asyncio.get_running_loop().create_future()
        self._hello_waiter = waiter
        try:
            logger.debug(f"Sending hello to {self.address}:{self.port}")
            self.sendto(MiioPacket.create_hello(), (self.address, self.port))
            try:
                data = await asyncio.wait_for(waiter, self.timeout)
            except asyncio.TimeoutError:
                raise HandshakeTimeoutError(self.timeout) from None
        finally:
            if self._hello_waiter is waiter:
                self._hello_waiter = None
        packet = MiioPacket.decode(data, self.token)
        self.device_id = packet.device_id
        self.stamp = packet.stamp
        self.last_handshake = time.monotonic()
        logger.info(f"Handshake with {self.address} complete: device_id=0x{self.device_id:08x}, stamp={self.stamp}")
        return HandshakeResult(packet.device_id, packet.stamp)

    async def send(self, method: str, params: Optional[Jsonable]=None) -> Jsonable:
        """Send a JSON-RPC command to the device and return the "result" of its response.

        Parameters:
            method: The miIO method name, e.g. "get_prop".
            params: The method parameters. Defaults to an empty list.

        Raises:
            CommandTimeoutError:     no matching response within self.timeout seconds
            MiioRemoteError:         the device answered with a JSON-RPC error object
            HandshakeTimeoutError:   a required re-handshake timed out
            TransportDestroyedError: destroy() was called
        """
        self._check_not_destroyed()
        if params is None:
            params = []
        if self.handshake_is_stale:
            await self.handshake()
        self._check_not_destroyed()
        await self.open()

        msg_id = self._next_msg_id
        self._next_msg_id += 1
        self.stamp = (self.stamp + 1) & STAMP_MASK
        payload: JsonableDict = { "id": msg_id, "method": method, "params": params }
        data = MiioPacket.encode(self.device_id, self.stamp, self.token, payload)

        loop = asyncio.get_running_loop()
        future: Future[Jsonable] = loop.create_future()
        timer = loop.call_later(self.timeout, self._on_request_timeout, msg_id)
        pending = _PendingRequest(msg_id, method, future, timer)
        self.pending[msg_id] = pending
        try:
            logger.debug(f"Sending command {payload} to {self.address}")
            self.sendto(data, (self.address, self.port))
            return await future
        finally:
            timer.cancel()
            if self.pending.get(msg_id) is pending:
                del self.pending[msg_id]

    def _on_request_timeout(self, msg_id: int) -> None:
        pending = self.pending.pop(msg_id, None)
        if pending is None or pending.future.done():
            return
        logger.info(f"Command '{pending.method}' (id={msg_id}) to {self.address} timed out after {self.timeout} seconds")
        pending.future.set_exception(CommandTimeoutError(pending.method, self.timeout))

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Called for every datagram received on the transport socket."""
        waiter = self._hello_waiter
        if waiter is not None and not waiter.done():
            self._hello_waiter = None
            waiter.set_result(data)
        self._handle_response(addr, data)

    def _handle_response(self, addr: HostAndPort, data: bytes) -> None:
        try:
            packet = MiioPacket.decode(data, self.token)
        except MiioPacketError as e:
            logger.debug(f"Ignoring malformed datagram from {addr}: {e}")
            return
        if packet.is_hello:
            return
        if packet.stamp > self.stamp:
            self.stamp = packet.stamp
        payload = packet.payload
        if not isinstance(payload, dict):
            logger.debug(f"Ignoring non-object payload from {addr}: {payload!r}")
            return
        msg_id = payload.get('id')
        if not isinstance(msg_id, (int, float)) or isinstance(msg_id, bool):
            logger.debug(f"Ignoring payload without a message ID from {addr}: {payload!r}")
            return
        pending = self.pending.pop(msg_id, None)
        if pending is None:
            logger.debug(f"Ignoring response with unknown message ID {msg_id} from {addr}")
            return
        pending.timer.cancel()
        if pending.future.done():
            return
        error = payload.get('error')
        if error is not None:
            if isinstance(error, dict):
                code = error.get('code', -1)
                message = error.get('message', '')
            else:
                code, message = -1, str(error)
            logger.debug(f"Command '{pending.method}' (id={msg_id}) failed on device: {code} {message}")
            pending.future.set_exception(MiioRemoteError(code, str(message)))
        else:
            pending.future.set_result(payload.get('result'))

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        In-flight commands are not failed; they time out on their own if no response arrives.
        """
        super().error_received(exc)
        for handler in list(self.error_handlers.values()):
            try:
                handler(exc)
            except Exception as e:
                logger.warning(f"Error handler raised exception processing socket error: {e}")

    def destroy(self) -> None:
        """Fail every pending command with TransportDestroyedError and close the socket.

        Safe to call more than once, and on a transport that never opened a socket.
        """
        self._destroyed = True
        pending_requests = list(self.pending.values())
        self.pending.clear()
        for pending in pending_requests:
            pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_exception(TransportDestroyedError())
        waiter = self._hello_waiter
        self._hello_waiter = None
        if waiter is not None and not waiter.done():
            waiter.set_exception(TransportDestroyedError())
        if len(pending_requests) > 0:
            logger.debug(f"Destroyed transport to {self.address} with {len(pending_requests)} pending commands")
        self.close()

    def __str__(self) -> str:
        return f"MiioTransport({self.address}:{self.port})"

    async def __aenter__(self) -> Self:
        self._check_not_destroyed()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.destroy()
        return False
