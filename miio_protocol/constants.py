# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

MIIO_PORT = 54321
"""The UDP port on which miIO devices listen for hello probes and commands."""

MIIO_BROADCAST_ADDRESS = "255.255.255.255"
"""The default address to which discovery hello probes are broadcast."""

PACKET_MAGIC = 0x2131
"""The first two bytes (big-endian) of every miIO packet."""

HEADER_SIZE = 32
"""The size of a miIO packet header, in bytes. A packet with no body is exactly this long."""

MAX_PACKET_LENGTH = 0xFFFF
"""The largest total packet length that fits in the 16-bit length field."""

TOKEN_SIZE = 16
"""The size of a device token, in bytes."""

TOKEN_HEX_LENGTH = TOKEN_SIZE * 2
"""The length of a device token rendered as a hex string."""

DEFAULT_TIMEOUT = 5.0
"""The default time (in seconds) to wait for a handshake or command response."""

DEFAULT_DISCOVERY_TIMEOUT = 5.0
"""The default length (in seconds) of a discovery collection window."""

HANDSHAKE_MAX_AGE = 60.0
"""The age (in seconds) after which a transport repeats the handshake before sending a command."""

EMPTY_TOKEN = b'\x00' * TOKEN_SIZE
"""A placeholder token used to decode hello responses, which carry no encrypted body."""

KEYRING_SERVICE = "miio-protocol"
"""The keyring service name under which device tokens are stored."""

TOKEN_ENV_VAR = "MIIO_TOKEN"
"""The environment variable the command line tool reads a hex device token from."""
