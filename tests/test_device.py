"""Tests for MiioDevice sessions and reverse hostname lookup."""

import socket

import pytest

from miio_protocol.device import MiioDevice, MiioDeviceInfo
from miio_protocol.dns import lookup_device_hostname
from miio_protocol.exceptions import DnsLookupError, InvalidTokenHexError, TransportDestroyedError

from conftest import DEVICE_ID, TOKEN, TOKEN_HEX, FakeMiioDevice


class TestMiioDevice:
    """Tests for MiioDevice."""

    def test_accepts_hex_token(self) -> None:
        device = MiioDevice("192.168.1.50", TOKEN_HEX, model="yeelink.light.bslamp2")
        assert device.transport.token == TOKEN
        assert device.model == "yeelink.light.bslamp2"
        assert "192.168.1.50" in str(device)

    def test_rejects_bad_hex_token(self) -> None:
        with pytest.raises(InvalidTokenHexError):
            _ = MiioDevice("192.168.1.50", "not-a-token")

    @pytest.mark.asyncio
    async def test_connect_and_call(self, fake_device: FakeMiioDevice) -> None:
        async with MiioDevice("127.0.0.1", TOKEN, model="test.model", port=fake_device.port) as device:
            info = await device.connect()
            assert info == MiioDeviceInfo("127.0.0.1", DEVICE_ID, "test.model")
            assert await device.call("set_power", ["on"]) == ["ok"]
        assert device.transport.destroyed

    @pytest.mark.asyncio
    async def test_get_properties_uses_get_prop(self, fake_device: FakeMiioDevice) -> None:
        fake_device.handler = lambda req: {"id": req["id"], "result": ["on", 50]}
        async with MiioDevice("127.0.0.1", TOKEN, port=fake_device.port) as device:
            assert await device.get_properties(["power", "bright"]) == ["on", 50]
        assert fake_device.requests[0]["method"] == "get_prop"
        assert fake_device.requests[0]["params"] == ["power", "bright"]

    @pytest.mark.asyncio
    async def test_call_after_destroy_fails(self, fake_device: FakeMiioDevice) -> None:
        device = MiioDevice("127.0.0.1", TOKEN, port=fake_device.port)
        device.destroy()
        with pytest.raises(TransportDestroyedError):
            _ = await device.call("miIO.info")


class TestHostnameLookup:
    """Tests for lookup_device_hostname and MiioDevice.lookup_hostname."""

    @pytest.mark.asyncio
    async def test_successful_lookup(self) -> None:
        async def lookup(address: str, port: int) -> tuple[str, str]:
            assert (address, port) == ("192.168.1.50", 54321)
            return ("lamp.local", "54321")

        device = MiioDevice("192.168.1.50", TOKEN)
        result = await device.lookup_hostname(lookup_service=lookup)
        assert result.hostname == "lamp.local"
        assert result.service == "54321"
        assert result.error is None
        assert result.to_jsonable()["cause"] is None

    @pytest.mark.asyncio
    async def test_failed_lookup_is_captured(self) -> None:
        cause = socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        async def lookup(address: str, port: int) -> tuple[str, str]:
            raise cause

        result = await lookup_device_hostname("192.168.1.51", port=1234, lookup_service=lookup)
        assert result.hostname is None
        assert result.service is None
        assert isinstance(result.error, DnsLookupError)
        assert result.error.address == "192.168.1.51"
        assert result.error.port == 1234
        assert result.error.__cause__ is cause
        jsonable = result.to_jsonable()
        assert jsonable["error"] == "DNS lookup failed for 192.168.1.51:1234"
        assert jsonable["cause"] == str(cause)
