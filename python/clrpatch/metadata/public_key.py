"""
Blob heap decoding and public key token derivation.

An AssemblyRef's PublicKeyOrToken blob holds either an 8-byte token or the
full public key, depending on the PublicKey bit of its flags. The token of a
full key is the last 8 bytes of its SHA-1 digest in reverse order, which is
how the runtime abbreviates strong-name keys.
"""

import hashlib

from ..cursor import FileCursor
from ..errors import FormatError

PUBLIC_KEY_TOKEN_SIZE = 8


def read_compressed_uint(cursor: FileCursor) -> int:
    """Read an ECMA-335 compressed unsigned integer (II.23.2).

    A full public key blob starts with a two-byte length (0x80 | high, low),
    which is why keys of 128..16383 bytes carry a leading marker byte.
    """
    first = cursor.read_u8()
    if first & 0x80 == 0:
        return first
    if first & 0xC0 == 0x80:
        return ((first & 0x3F) << 8) | cursor.read_u8()
    if first & 0xE0 == 0xC0:
        rest = cursor.read(3)
        return ((first & 0x1F) << 24) | (rest[0] << 16) | (rest[1] << 8) | rest[2]
    raise FormatError(
        f"Invalid compressed integer 0x{first:02x} at 0x{cursor.tell() - 1:x}"
    )


def read_blob(cursor: FileCursor) -> bytes:
    """Read a length-prefixed blob at the cursor."""
    length = read_compressed_uint(cursor)
    return cursor.read(length)


def public_key_to_token(public_key: bytes) -> bytes:
    """Derive the 8-byte public key token from a full public key."""
    digest = hashlib.sha1(public_key).digest()
    return digest[-PUBLIC_KEY_TOKEN_SIZE:][::-1]


def read_public_key_token(cursor: FileCursor, is_full_key: bool) -> bytes:
    """Read a PublicKeyOrToken blob and return the token bytes.

    Args:
        cursor: Positioned at the blob (length prefix included)
        is_full_key: True when the owning row's PublicKey flag is set

    Returns:
        The token verbatim, or the token derived from the full key. An empty
        blob stays empty.
    """
    blob = read_blob(cursor)
    if not is_full_key or not blob:
        return blob
    return public_key_to_token(blob)
