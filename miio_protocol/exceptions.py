#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from typing import Optional

class MiioError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class InvalidTokenLengthError(MiioError, ValueError):
  """A device token is not exactly 16 bytes long."""
  length: int

  def __init__(self, length: int):
    super().__init__(f"Token must be 16 bytes, got {length}")
    self.length = length

class InvalidTokenHexError(MiioError, ValueError):
  """A hex token string is not 32 hexadecimal characters."""
  pass

class MiioDecryptionError(MiioError):
  """A ciphertext could not be decrypted (bad length or padding)."""
  pass

class MiioPacketError(MiioError):
  """Base class for errors decoding or encoding a miIO packet."""
  pass

class PacketTooShortError(MiioPacketError):
  length: int

  def __init__(self, length: int):
    super().__init__(f"Packet too short: {length} bytes")
    self.length = length

class ResponseTooShortError(MiioPacketError):
  length: int

  def __init__(self, length: int):
    super().__init__(f"Hello response too short: {length} bytes")
    self.length = length

class InvalidMagicError(MiioPacketError):
  magic: int

  def __init__(self, magic: int):
    super().__init__(f"Invalid magic: 0x{magic:04x}")
    self.magic = magic

class PacketTooLargeError(MiioPacketError):
  length: int

  def __init__(self, length: int):
    super().__init__(f"Packet too large: {length} bytes does not fit the length field")
    self.length = length

class PayloadDecodeError(MiioPacketError):
  """The body of a packet could not be decrypted or parsed as JSON."""
  pass

class MiioTimeoutError(MiioError, TimeoutError):
  """Base class for handshake and command timeouts."""
  timeout: float

  def __init__(self, msg: str, timeout: float):
    super().__init__(msg)
    self.timeout = timeout

class HandshakeTimeoutError(MiioTimeoutError):
  def __init__(self, timeout: float):
    super().__init__(f"Handshake timeout after {timeout} seconds", timeout)

class CommandTimeoutError(MiioTimeoutError):
  method: str

  def __init__(self, method: str, timeout: float):
    super().__init__(f"Command '{method}' timed out after {timeout} seconds", timeout)
    self.method = method

class MiioRemoteError(MiioError):
  """The device answered a command with a JSON-RPC error object."""
  code: int
  message: str

  def __init__(self, code: int, message: str):
    super().__init__(f"miIO error {code}: {message}")
    self.code = code
    self.message = message

class TransportDestroyedError(MiioError):
  def __init__(self, msg: Optional[str]=None):
    super().__init__("Transport destroyed" if msg is None else msg)

class DnsLookupError(MiioError):
  address: str
  port: int

  def __init__(self, address: str, port: int):
    super().__init__(f"DNS lookup failed for {address}:{port}")
    self.address = address
    self.port = port

class MiotError(MiioError):
  """Base class for errors in the MIoT property/action layer."""
  pass

class MiotSpecUnavailableError(MiotError):
  pass

class MiotUnknownNameError(MiotError, KeyError):
  def __str__(self) -> str:
    return str(self.args[0]) if self.args else ''

class MiotPropertyError(MiotError):
  name: str
  code: Optional[int]

  def __init__(self, msg: str, name: str, code: Optional[int]):
    super().__init__(msg)
    self.name = name
    self.code = code
