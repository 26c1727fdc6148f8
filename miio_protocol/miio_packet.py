#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Abstraction of a binary packet used in the miIO protocol.

Every packet starts with a 32-byte big-endian header:

    offset  size  field
    0       2     magic = 0x2131
    2       2     total length (header + body)
    4       4     reserved (0x00000000 normally; 0xFFFFFFFF in a hello probe)
    8       4     device id (0xFFFFFFFF in a hello probe)
    12      4     stamp
    16      16    checksum, or the device token in a hello response
    32..    var   AES-128-CBC ciphertext of UTF-8 JSON (absent when length == 32)

There is no type tag. A packet whose length is exactly 32 is a hello probe or
hello response, and its last 16 header bytes hold a token rather than a checksum.
"""

from __future__ import annotations

import json
import struct

from .internal_types import *
from .pkg_logging import logger
from .constants import PACKET_MAGIC, HEADER_SIZE, MAX_PACKET_LENGTH
from .exceptions import (
    MiioDecryptionError,
    PacketTooShortError,
    ResponseTooShortError,
    InvalidMagicError,
    PacketTooLargeError,
    PayloadDecodeError,
  )
from .miio_crypto import MiioCrypto

HEADER_STRUCT = struct.Struct('>HHIII16s')
"""magic, length, reserved, device_id, stamp, checksum"""

HELLO_RESERVED = 0xFFFFFFFF
HELLO_DEVICE_ID = 0xFFFFFFFF

class MiioPacket:
    """Wrapper for a raw miIO packet.

    Instances are created by MiioPacket.decode() and never change afterwards. Use
    the static constructors create_hello() and encode() to produce raw bytes to send.
    """

    _raw_data: bytes
    """The raw UDP datagram contents"""

    _magic: int
    _length: int
    _reserved: int
    _device_id: int
    _stamp: int
    _checksum: bytes

    _payload: Optional[Jsonable]
    """The decrypted, parsed JSON body. None for a hello packet."""

    def __init__(self, raw_data: bytes, payload: Optional[Jsonable]=None):
        if len(raw_data) < HEADER_SIZE:
            raise PacketTooShortError(len(raw_data))
        self._raw_data = bytes(raw_data)
        (
            self._magic,
            self._length,
            self._reserved,
            self._device_id,
            self._stamp,
            self._checksum,
          ) = HEADER_STRUCT.unpack_from(self._raw_data, 0)
        self._payload = payload

    def __str__(self) -> str:
        return (
            f"MiioPacket(length={self._length}, device_id=0x{self._device_id:08x}, "
            f"stamp={self._stamp}, payload={self._payload!r})"
          )

    def __repr__(self) -> str:
        return str(self)

    @property
    def raw_data(self) -> bytes:
        """The raw UDP datagram contents"""
        return self._raw_data

    @property
    def magic(self) -> int:
        return self._magic

    @property
    def length(self) -> int:
        """The total packet length declared in the header, including the header itself."""
        return self._length

    @property
    def reserved(self) -> int:
        return self._reserved

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def stamp(self) -> int:
        return self._stamp

    @property
    def checksum(self) -> bytes:
        """The 16-byte checksum field. In a hello response this holds the device token instead."""
        return self._checksum

    @property
    def body(self) -> bytes:
        """The encrypted body, as delimited by the header length field."""
        return self._raw_data[HEADER_SIZE:self._length]

    @property
    def is_hello(self) -> bool:
        """True if this is a body-less hello probe or hello response."""
        return self._length == HEADER_SIZE

    @property
    def payload(self) -> Optional[Jsonable]:
        """The decoded JSON payload, or None for a hello packet."""
        return self._payload

    @staticmethod
    def create_hello() -> bytes:
        """Create the 32-byte hello probe used for both handshakes and broadcast discovery.

        Every byte is 0xFF except the magic and length fields.
        """
        return HEADER_STRUCT.pack(
            PACKET_MAGIC,
            HEADER_SIZE,
            HELLO_RESERVED,
            HELLO_DEVICE_ID,
            0xFFFFFFFF,
            b'\xff' * 16,
          )

    @staticmethod
    def encode(device_id: int, stamp: int, token: bytes, payload: Jsonable) -> bytes:
        """Encode a JSON-serializable payload into an encrypted miIO packet.

        The checksum field is the MD5 of the header (with the token in place of the
        checksum) followed by the ciphertext.
        """
        crypto = MiioCrypto(token)
        json_text = json.dumps(payload, separators=(',', ':'), ensure_ascii=False)
        encrypted = crypto.encrypt(json_text.encode('utf-8'))
        packet_length = HEADER_SIZE + len(encrypted)
        if packet_length > MAX_PACKET_LENGTH:
            raise PacketTooLargeError(packet_length)
        header = HEADER_STRUCT.pack(PACKET_MAGIC, packet_length, 0, device_id, stamp, crypto.token)
        checksum = MiioCrypto.md5(header + encrypted)
        return header[:16] + checksum + encrypted

    @classmethod
    def decode(cls, data: bytes, token: bytes) -> MiioPacket:
        """Decode a raw miIO packet, decrypting and parsing its body if it has one.

        A hello response (length == 32) is returned with payload None and no attempt is
        made to decrypt it, so any token may be passed in that case.

        Raises:
            PacketTooShortError: fewer than 32 bytes were provided
            InvalidMagicError:   the first two bytes are not 0x2131
            PayloadDecodeError:  the body could not be decrypted or is not valid JSON
        """
        if len(data) < HEADER_SIZE:
            raise PacketTooShortError(len(data))
        magic = struct.unpack_from('>H', data, 0)[0]
        if magic != PACKET_MAGIC:
            raise InvalidMagicError(magic)
        packet = cls(data)
        if packet.is_hello:
            return packet

        crypto = MiioCrypto(token)
        try:
            plaintext = crypto.decrypt(packet.body)
            # some firmware NUL-terminates the JSON text
            json_text = plaintext.rstrip(b'\x00').decode('utf-8')
            payload = json.loads(json_text)
        except (MiioDecryptionError, UnicodeDecodeError, ValueError) as e:
            raise PayloadDecodeError(f"Unable to decode {len(packet.body)}-byte packet body: {e}") from e
        packet._payload = payload
        logger.debug(f"Decoded {packet}")
        return packet

    @staticmethod
    def extract_token(hello_response: bytes) -> bytes:
        """Read the device token from the checksum field of a hello response."""
        if len(hello_response) < HEADER_SIZE:
            raise ResponseTooShortError(len(hello_response))
        return bytes(hello_response[16:32])
