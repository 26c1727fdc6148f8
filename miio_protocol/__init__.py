# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package miio_protocol implements the Xiaomi miIO local network protocol.

miIO is the UDP protocol (port 54321) spoken on the local network by Xiaomi
and Mi Home ecosystem devices: lights, plugs, vacuums, air purifiers, etc.
Every datagram carries a 32-byte header; command bodies are JSON-RPC style
requests encrypted with AES-128-CBC, using a key and IV derived from the
device's 16-byte secret token.

A session with a device begins with an unencrypted "hello" handshake, from which
the client learns the device ID and the device's current stamp. The same hello
packet, sent to a broadcast address, discovers the devices on a network.

Newer devices additionally publish a MIoT specification that maps named
properties and actions to numeric service/property/action IDs; see MiotDevice.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict

from .exceptions import (
    MiioError,
    InvalidTokenLengthError,
    InvalidTokenHexError,
    MiioDecryptionError,
    MiioPacketError,
    PacketTooShortError,
    ResponseTooShortError,
    InvalidMagicError,
    PacketTooLargeError,
    PayloadDecodeError,
    MiioTimeoutError,
    HandshakeTimeoutError,
    CommandTimeoutError,
    MiioRemoteError,
    TransportDestroyedError,
    DnsLookupError,
    MiotError,
    MiotSpecUnavailableError,
    MiotUnknownNameError,
    MiotPropertyError,
  )

from .miio_crypto import MiioCrypto, token_from_hex, token_to_hex
from .miio_packet import MiioPacket
from .transport import MiioTransport, TransportState, HandshakeResult
from .discovery import MiioDiscovery, MiioDiscoveredDevice, discover, discover_all_interfaces
from .dns import DnsLookupResult, DnsLookupService, lookup_device_hostname
from .device import MiioDevice, MiioDeviceInfo
from .miot import MiotDevice, MiotSpecFetcher, DeviceCapability, MiotPropertyRef, MiotActionRef
from .token_store import get_stored_token, store_token, delete_stored_token
from .constants import MIIO_PORT, MIIO_BROADCAST_ADDRESS, DEFAULT_TIMEOUT, DEFAULT_DISCOVERY_TIMEOUT

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict',
    'MiioError', 'InvalidTokenLengthError', 'InvalidTokenHexError', 'MiioDecryptionError',
    'MiioPacketError', 'PacketTooShortError', 'ResponseTooShortError', 'InvalidMagicError',
    'PacketTooLargeError', 'PayloadDecodeError',
    'MiioTimeoutError', 'HandshakeTimeoutError', 'CommandTimeoutError',
    'MiioRemoteError', 'TransportDestroyedError', 'DnsLookupError',
    'MiotError', 'MiotSpecUnavailableError', 'MiotUnknownNameError', 'MiotPropertyError',
    'MiioCrypto', 'token_from_hex', 'token_to_hex',
    'MiioPacket',
    'MiioTransport', 'TransportState', 'HandshakeResult',
    'MiioDiscovery', 'MiioDiscoveredDevice', 'discover', 'discover_all_interfaces',
    'DnsLookupResult', 'DnsLookupService', 'lookup_device_hostname',
    'MiioDevice', 'MiioDeviceInfo',
    'MiotDevice', 'MiotSpecFetcher', 'DeviceCapability', 'MiotPropertyRef', 'MiotActionRef',
    'get_stored_token', 'store_token', 'delete_stored_token',
    'MIIO_PORT', 'MIIO_BROADCAST_ADDRESS', 'DEFAULT_TIMEOUT', 'DEFAULT_DISCOVERY_TIMEOUT',
]
