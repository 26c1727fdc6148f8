#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MiioCrypto -- the symmetric cipher used for miIO packet bodies.

The body of every miIO command or response packet is AES-128-CBC encrypted with
PKCS#7 padding. Both the key and the IV are derived from the 16-byte device token:

    key = MD5(token)
    iv  = MD5(key + token)

Because the IV is fixed for a given token, encryption is deterministic: the same
plaintext always yields the same ciphertext. That is a property of the protocol
that real devices depend on, not a general-purpose secure construction.
"""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .internal_types import *
from .constants import TOKEN_SIZE, TOKEN_HEX_LENGTH
from .exceptions import InvalidTokenLengthError, InvalidTokenHexError, MiioDecryptionError

BLOCK_SIZE_BITS = 128

class MiioCrypto:
    """Encrypts and decrypts packet bodies with key material derived from a device token."""

    _token: bytes
    _key: bytes
    _iv: bytes

    def __init__(self, token: bytes):
        if len(token) != TOKEN_SIZE:
            raise InvalidTokenLengthError(len(token))
        self._token = bytes(token)
        self._key = MiioCrypto.md5(self._token)
        self._iv = MiioCrypto.md5(self._key + self._token)

    @property
    def token(self) -> bytes:
        return self._token

    @property
    def key(self) -> bytes:
        """The AES key, MD5(token)."""
        return self._key

    @property
    def iv(self) -> bytes:
        """The CBC initialization vector, MD5(key + token)."""
        return self._iv

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt a plaintext byte string using AES-128-CBC with PKCS#7 padding."""
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = self._cipher().encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt a ciphertext produced by encrypt().

        Raises MiioDecryptionError if the ciphertext is not a whole number of blocks
        or the padding is malformed.
        """
        try:
            decryptor = self._cipher().decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise MiioDecryptionError(f"Unable to decrypt {len(ciphertext)}-byte ciphertext: {e}") from e

    @staticmethod
    def md5(data: bytes) -> bytes:
        """Compute the 16-byte MD5 digest of the given data."""
        return hashlib.md5(data).digest()

    def __str__(self) -> str:
        return f"MiioCrypto(key={self._key.hex()})"

    def __repr__(self) -> str:
        return str(self)

def token_from_hex(hex_str: str) -> bytes:
    """Convert a 32-character hex string (as shown by token extraction tools) to a 16-byte token."""
    if len(hex_str) != TOKEN_HEX_LENGTH:
        raise InvalidTokenHexError(f"Token hex must be {TOKEN_HEX_LENGTH} characters, got {len(hex_str)}")
    try:
        token = bytes.fromhex(hex_str)
    except ValueError as e:
        raise InvalidTokenHexError(f"Token is not a valid hex string: {hex_str!r}") from e
    # bytes.fromhex() skips whitespace
    if len(token) != TOKEN_SIZE:
        raise InvalidTokenHexError(f"Token is not a valid hex string: {hex_str!r}")
    return token

def token_to_hex(token: bytes) -> str:
    return token.hex()
