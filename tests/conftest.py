"""Shared fixtures for miio_protocol tests.

Provides a fake miIO device that answers hello probes and encrypted commands
on a loopback UDP socket.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any, Optional

import pytest
import pytest_asyncio

from miio_protocol.miio_packet import HEADER_STRUCT, MiioPacket
from miio_protocol.constants import PACKET_MAGIC, HEADER_SIZE

TOKEN = b"\xff" * 16
TOKEN_HEX = "ff" * 16
DEVICE_ID = 0x12345678
STAMP = 100

JSONDict = dict[str, Any]
CommandHandler = Callable[[JSONDict], Optional[JSONDict]]


def build_hello_response(
    device_id: int = DEVICE_ID, stamp: int = STAMP, token_field: bytes = b"\xff" * 16
) -> bytes:
    """Return a 32-byte hello response as a device would send it."""
    return HEADER_STRUCT.pack(PACKET_MAGIC, HEADER_SIZE, 0, device_id, stamp, token_field)


def reply_ok(request: JSONDict) -> Optional[JSONDict]:
    return {"id": request["id"], "result": ["ok"]}


class FakeMiioDevice(asyncio.DatagramProtocol):
    """A loopback miIO responder.

    Replies to hello probes with a hello response, and to encrypted commands with
    whatever `handler` returns (no reply when it returns None).
    """

    def __init__(self, token: bytes = TOKEN, device_id: int = DEVICE_ID, stamp: int = STAMP) -> None:
        self.token = token
        self.device_id = device_id
        self.stamp = stamp
        self.handler: CommandHandler = reply_ok
        self.respond_to_hello = True
        self.hello_count = 0
        self.requests: list[JSONDict] = []
        self.request_stamps: list[int] = []
        self.transport: Optional[asyncio.DatagramTransport] = None

    @property
    def port(self) -> int:
        assert self.transport is not None
        return int(self.transport.get_extra_info("sockname")[1])

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        assert self.transport is not None
        packet = MiioPacket.decode(data, self.token)
        if packet.is_hello:
            self.hello_count += 1
            if self.respond_to_hello:
                self.transport.sendto(build_hello_response(self.device_id, self.stamp), addr)
            return
        request = packet.payload
        assert isinstance(request, dict)
        self.requests.append(request)
        self.request_stamps.append(packet.stamp)
        response = self.handler(request)
        if response is not None:
            self.transport.sendto(
                MiioPacket.encode(self.device_id, packet.stamp, self.token, response), addr
            )


@pytest_asyncio.fixture
async def fake_device() -> AsyncIterator[FakeMiioDevice]:
    """A FakeMiioDevice listening on 127.0.0.1 at an ephemeral port."""
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        FakeMiioDevice, local_addr=("127.0.0.1", 0)
    )
    assert isinstance(protocol, FakeMiioDevice)
    try:
        yield protocol
    finally:
        transport.close()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def device_addr() -> tuple[str, int]:
    return ("127.0.0.1", 54321)


@pytest_asyncio.fixture
async def loop_errors() -> AsyncIterator[list[dict[str, Any]]]:
    """Contexts passed to the event loop's exception handler during the test."""
    loop = asyncio.get_running_loop()
    errors: list[dict[str, Any]] = []
    loop.set_exception_handler(lambda _loop, context: errors.append(context))
    try:
        yield errors
    finally:
        loop.set_exception_handler(None)
