"""
Metadata root reader.

Layout of the root (ECMA-335 II.24.2.1):

    u32  Signature      "BSJB"
    u16  MajorVersion
    u16  MinorVersion
    u32  Reserved
    u32  Length         of the version string, padded to 4
    ...  Version        NUL-terminated UTF-8
    u16  Flags          reserved
    u16  Streams        number of stream headers

Each stream header is an (offset, size) pair relative to the root followed by
a NUL-terminated ASCII name padded to a 4-byte boundary.
"""

import logging

from ..cursor import FileCursor
from ..errors import FormatError, MissingMetadataStream, NotManagedAssembly
from ..pe.reader import PeImage
from ..pe.types import round_up_to_alignment
from .types import (
    MetadataRoot,
    StreamHeader,
    METADATA_SIGNATURE,
    REQUIRED_STREAMS,
)

logger = logging.getLogger(__name__)

METADATA_ROOT_PREFIX_SIZE = 16
MAX_VERSION_LENGTH = 256
MAX_STREAM_NAME_LENGTH = 32


def read_metadata_root(cursor: FileCursor, image: PeImage) -> MetadataRoot:
    """Read the metadata root pointed to by the CLR header.

    Raises:
        NotManagedAssembly: Signature is not "BSJB"
        MissingMetadataStream: A required stream is absent
        InvalidOffset: Metadata RVA is not inside any section
    """
    root_offset = image.rva_to_file_offset(image.clr_header.MetaDataRVA)
    cursor.seek(root_offset)

    signature, major, minor, _reserved, version_length = cursor.read_struct("<IHHII")
    if signature != METADATA_SIGNATURE:
        raise NotManagedAssembly(
            f"Bad metadata signature 0x{signature:08x} at 0x{root_offset:x}"
        )
    if version_length > MAX_VERSION_LENGTH:
        raise FormatError(f"Metadata version string too long: {version_length}")

    raw_version = cursor.read(version_length)
    version = raw_version.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
    cursor.seek(
        root_offset
        + METADATA_ROOT_PREFIX_SIZE
        + round_up_to_alignment(version_length, 4)
    )

    cursor.skip(2)  # Flags
    num_streams = cursor.read_u16()

    streams = []
    for _ in range(num_streams):
        offset, size = cursor.read_struct("<II")
        name = _read_stream_name(cursor)
        streams.append(StreamHeader(name=name, offset=root_offset + offset, size=size))

    root = MetadataRoot(
        signature=signature,
        major_version=major,
        minor_version=minor,
        version=version,
        file_offset=root_offset,
        streams=tuple(streams),
    )

    logger.debug(
        "Metadata root at 0x%x, version %r, streams: %s",
        root_offset,
        version,
        ", ".join(f"{s.name}@0x{s.offset:x}+0x{s.size:x}" for s in streams),
    )

    missing = [name for name in REQUIRED_STREAMS if root.find_stream(name) is None]
    if missing:
        raise MissingMetadataStream(missing)

    return root


def _read_stream_name(cursor: FileCursor) -> str:
    """Read a NUL-terminated stream name and skip its 4-byte padding."""
    start = cursor.tell()
    chunk = cursor.read_at_most(MAX_STREAM_NAME_LENGTH)
    nul = chunk.find(b"\x00")
    if nul < 0:
        raise FormatError(f"Unterminated stream name at 0x{start:x}")
    cursor.seek(start + round_up_to_alignment(nul + 1, 4))
    return chunk[:nul].decode("ascii", errors="replace")
