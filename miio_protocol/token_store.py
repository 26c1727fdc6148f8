# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Persistent storage of device tokens in the system keyring, keyed by device address."""

from typing import Optional

import keyring
from keyring.errors import PasswordDeleteError

from .constants import KEYRING_SERVICE, TOKEN_SIZE
from .exceptions import InvalidTokenLengthError
from .miio_crypto import token_from_hex, token_to_hex

def get_stored_token(address: str, service: str=KEYRING_SERVICE) -> Optional[bytes]:
  """Returns the token stored for a device address, or None if there is none."""
  result = keyring.get_password(service, address)
  if result is None:
    return None
  return token_from_hex(result)

def store_token(address: str, token: bytes, service: str=KEYRING_SERVICE) -> None:
  if len(token) != TOKEN_SIZE:
    raise InvalidTokenLengthError(len(token))
  keyring.set_password(service, address, token_to_hex(token))

def delete_stored_token(address: str, service: str=KEYRING_SERVICE) -> None:
  try:
    keyring.delete_password(service, address)
  except PasswordDeleteError as e:
    raise KeyError(f"No token is stored for device '{address}' in keyring service '{service}'") from e
