"""Tests for MiioTransport: handshake, request/response correlation, timeouts and teardown."""

import asyncio
import gc
import time
from typing import Any, Optional

import pytest

from miio_protocol.exceptions import (
    CommandTimeoutError,
    HandshakeTimeoutError,
    InvalidTokenLengthError,
    MiioRemoteError,
    TransportDestroyedError,
)
from miio_protocol.miio_packet import MiioPacket
from miio_protocol.transport import HandshakeResult, MiioTransport, TransportState

from conftest import DEVICE_ID, STAMP, TOKEN, FakeMiioDevice, build_hello_response, wait_until


def make_transport(fake: FakeMiioDevice, timeout: float = 2.0, **kwargs: Any) -> MiioTransport:
    return MiioTransport("127.0.0.1", TOKEN, timeout=timeout, port=fake.port, **kwargs)


def no_reply(request: dict[str, Any]) -> Optional[dict[str, Any]]:
    return None


class TestHandshake:
    """Tests for the hello handshake."""

    @pytest.mark.asyncio
    async def test_handshake_over_loopback(self, fake_device: FakeMiioDevice) -> None:
        async with make_transport(fake_device) as transport:
            assert transport.state == TransportState.UNBOUND
            result = await transport.handshake()
            assert result == HandshakeResult(DEVICE_ID, STAMP)
            assert transport.device_id == DEVICE_ID
            assert transport.stamp == STAMP
            assert transport.state == TransportState.READY
            assert not transport.handshake_is_stale

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, fake_device: FakeMiioDevice) -> None:
        fake_device.respond_to_hello = False
        async with make_transport(fake_device, timeout=0.2) as transport:
            started = time.monotonic()
            with pytest.raises(HandshakeTimeoutError) as exc_info:
                _ = await transport.handshake()
            assert time.monotonic() - started < 2.0
            assert exc_info.value.timeout == 0.2
            assert isinstance(exc_info.value, TimeoutError)
            assert transport.state == TransportState.BOUND

    @pytest.mark.asyncio
    async def test_concurrent_handshakes_share_one_probe(self, fake_device: FakeMiioDevice) -> None:
        async with make_transport(fake_device) as transport:
            results = await asyncio.gather(transport.handshake(), transport.handshake())
            assert results[0] == results[1] == HandshakeResult(DEVICE_ID, STAMP)
            assert fake_device.hello_count == 1

    @pytest.mark.asyncio
    async def test_stale_handshake_is_repeated_before_send(self, fake_device: FakeMiioDevice) -> None:
        async with make_transport(fake_device) as transport:
            _ = await transport.handshake()
            _ = await transport.send("get_prop", ["power"])
            assert fake_device.hello_count == 1
            transport.last_handshake = time.monotonic() - 120.0
            assert transport.handshake_is_stale
            _ = await transport.send("get_prop", ["power"])
            assert fake_device.hello_count == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_leak_handshake_error(
        self, fake_device: FakeMiioDevice, loop_errors: list[dict[str, Any]]
    ) -> None:
        fake_device.respond_to_hello = False
        transport = make_transport(fake_device, timeout=0.2)
        with pytest.raises(asyncio.TimeoutError):
            _ = await asyncio.wait_for(transport.send("get_prop", ["power"]), 0.05)
        await asyncio.sleep(0.4)
        transport.destroy()
        del transport
        _ = gc.collect()
        assert loop_errors == []

    @pytest.mark.asyncio
    async def test_destroy_after_cancelled_handshake_caller(
        self, fake_device: FakeMiioDevice, loop_errors: list[dict[str, Any]]
    ) -> None:
        fake_device.respond_to_hello = False
        transport = make_transport(fake_device, timeout=5.0)
        with pytest.raises(asyncio.TimeoutError):
            _ = await asyncio.wait_for(transport.handshake(), 0.05)
        transport.destroy()
        await asyncio.sleep(0.05)
        del transport
        _ = gc.collect()
        assert loop_errors == []

    def test_constructor_rejects_bad_token(self) -> None:
        with pytest.raises(InvalidTokenLengthError):
            _ = MiioTransport("127.0.0.1", b"\x00" * 15)


class TestSend:
    """Tests for commands sent over the transport."""

    @pytest.mark.asyncio
    async def test_send_performs_handshake_and_returns_result(self, fake_device: FakeMiioDevice) -> None:
        async with make_transport(fake_device) as transport:
            result = await transport.send("set_power", ["on"])
            assert result == ["ok"]
            assert fake_device.hello_count == 1
            assert fake_device.requests == [{"id": 1, "method": "set_power", "params": ["on"]}]
            assert fake_device.request_stamps == [STAMP + 1]
            assert transport.pending == {}

    @pytest.mark.asyncio
    async def test_params_default_to_empty_list_and_ids_increase(self, fake_device: FakeMiioDevice) -> None:
        async with make_transport(fake_device) as transport:
            _ = await transport.send("miIO.info")
            _ = await transport.send("get_prop", ["power"])
            assert [r["id"] for r in fake_device.requests] == [1, 2]
            assert fake_device.requests[0]["params"] == []
            assert fake_device.request_stamps == [STAMP + 1, STAMP + 2]

    @pytest.mark.asyncio
    async def test_remote_error(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = lambda req: {"id": req["id"], "error": {"code": -5001, "message": "invalid_arg"}}
        async with make_transport(fake_device) as transport:
            with pytest.raises(MiioRemoteError) as exc_info:
                _ = await transport.send("set_power", ["bogus"])
            assert exc_info.value.code == -5001
            assert exc_info.value.message == "invalid_arg"
            assert "-5001" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_object_error_gets_code_minus_one(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = lambda req: {"id": req["id"], "error": "unknown method"}
        async with make_transport(fake_device) as transport:
            with pytest.raises(MiioRemoteError) as exc_info:
                _ = await transport.send("bogus")
            assert exc_info.value.code == -1
            assert exc_info.value.message == "unknown method"

    @pytest.mark.asyncio
    async def test_command_timeout(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = no_reply
        async with make_transport(fake_device, timeout=0.2) as transport:
            with pytest.raises(CommandTimeoutError, match="set_power") as exc_info:
                _ = await transport.send("set_power", ["on"])
            assert exc_info.value.method == "set_power"
            assert exc_info.value.timeout == 0.2
            assert transport.pending == {}

    @pytest.mark.asyncio
    async def test_response_with_other_id_leaves_command_pending(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = no_reply
        async with make_transport(fake_device) as transport:
            _ = await transport.handshake()
            task = asyncio.create_task(transport.send("get_prop", ["power"]))
            await wait_until(lambda: 1 in transport.pending)
            addr = ("127.0.0.1", fake_device.port)

            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": 99, "result": ["x"]}))
            await asyncio.sleep(0.05)
            assert not task.done()
            assert 1 in transport.pending

            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": 1, "result": ["on"]}))
            assert await task == ["on"]

    @pytest.mark.asyncio
    async def test_float_response_id_matches_command(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = no_reply
        async with make_transport(fake_device) as transport:
            _ = await transport.handshake()
            task = asyncio.create_task(transport.send("get_prop", ["power"]))
            await wait_until(lambda: 1 in transport.pending)
            addr = ("127.0.0.1", fake_device.port)

            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": True, "result": ["x"]}))
            await asyncio.sleep(0.05)
            assert not task.done()

            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": 1.0, "result": ["on"]}))
            assert await task == ["on"]
            assert transport.pending == {}

    @pytest.mark.asyncio
    async def test_responses_match_by_id_in_any_order(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = no_reply
        async with make_transport(fake_device) as transport:
            _ = await transport.handshake()
            first = asyncio.create_task(transport.send("get_prop", ["power"]))
            second = asyncio.create_task(transport.send("get_prop", ["bright"]))
            await wait_until(lambda: len(transport.pending) == 2)
            addr = ("127.0.0.1", fake_device.port)
            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": 2, "result": [50]}))
            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": 1, "result": ["on"]}))
            assert await first == ["on"]
            assert await second == [50]

    @pytest.mark.asyncio
    async def test_inbound_stamp_advances_session_stamp(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = no_reply
        async with make_transport(fake_device) as transport:
            _ = await transport.handshake()
            addr = ("127.0.0.1", fake_device.port)
            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, 5000, TOKEN, {"id": 42, "result": []}))
            assert transport.stamp == 5000
            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, 10, TOKEN, {"id": 43, "result": []}))
            assert transport.stamp == 5000

    @pytest.mark.asyncio
    async def test_noise_is_dropped(self, fake_device: FakeMiioDevice) -> None:
        async with make_transport(fake_device) as transport:
            _ = await transport.handshake()
            addr = ("127.0.0.1", fake_device.port)
            transport.datagram_received(addr, b"garbage")
            transport.datagram_received(addr, b"\x21\x31" + b"\x00" * 40)
            transport.datagram_received(addr, build_hello_response())
            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, ["not", "an", "object"]))
            transport.datagram_received(addr, MiioPacket.encode(DEVICE_ID, STAMP, TOKEN, {"id": True}))
            assert await transport.send("get_prop", ["power"]) == ["ok"]


class TestDestroy:
    """Tests for transport teardown."""

    def test_destroy_without_socket_is_safe(self) -> None:
        transport = MiioTransport("127.0.0.1", TOKEN)
        transport.destroy()
        transport.destroy()
        assert transport.destroyed
        assert transport.state == TransportState.UNBOUND

    @pytest.mark.asyncio
    async def test_destroy_fails_every_pending_command(
        self, fake_device: FakeMiioDevice, loop_errors: list[dict[str, Any]]
    ) -> None:
        fake_device.handler = no_reply
        transport = make_transport(fake_device, timeout=0.2)
        _ = await transport.handshake()
        tasks = [asyncio.create_task(transport.send("get_prop", [str(i)])) for i in range(3)]
        await wait_until(lambda: len(transport.pending) == 3)
        entries = list(transport.pending.values())

        transport.destroy()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert len(results) == 3
        assert all(isinstance(r, TransportDestroyedError) for r in results)
        assert all(entry.timer.cancelled() for entry in entries)
        assert transport.pending == {}
        assert transport.state == TransportState.UNBOUND

        # past the command timeout nothing else fires
        await asyncio.sleep(0.4)
        assert all(isinstance(task.exception(), TransportDestroyedError) for task in tasks)
        assert transport.pending == {}
        assert loop_errors == []

    @pytest.mark.asyncio
    async def test_destroy_during_handshake(self, fake_device: FakeMiioDevice) -> None:
        fake_device.respond_to_hello = False
        transport = make_transport(fake_device, timeout=5.0)
        task = asyncio.create_task(transport.handshake())
        await wait_until(lambda: fake_device.hello_count == 1)
        transport.destroy()
        with pytest.raises(TransportDestroyedError):
            _ = await task

    @pytest.mark.asyncio
    async def test_operations_after_destroy_fail(self, fake_device: FakeMiioDevice) -> None:
        transport = make_transport(fake_device)
        _ = await transport.handshake()
        transport.destroy()
        with pytest.raises(TransportDestroyedError):
            _ = await transport.send("get_prop", ["power"])
        with pytest.raises(TransportDestroyedError):
            _ = await transport.handshake()
        assert fake_device.requests == []


class TestSocketErrors:
    """Tests for socket error reporting."""

    @pytest.mark.asyncio
    async def test_error_handlers_receive_socket_errors(self, fake_device: FakeMiioDevice) -> None:
        received: list[Exception] = []
        async with make_transport(fake_device) as transport:
            i = transport.add_error_handler(received.append)
            error = OSError("network unreachable")
            transport.error_received(error)
            transport.remove_error_handler(i)
            transport.error_received(OSError("ignored"))
        assert received == [error]
