"""
In-place patch operations on a loaded managed assembly.

Every operation overwrites fixed-width fields at offsets recorded during
load. No operation changes the file length or any row count, so the
recorded offsets of the registry stay valid across patches. The in-memory
registry is not re-read; load the file again to observe the new values.

Each operation returns the Modification records it applied so callers can
verify that nothing outside those ranges changed (see clrpatch.verify).
"""

import logging
import struct
from collections.abc import Collection, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, BinaryIO

from .errors import FormatError, ReferenceNotFound
from .metadata.public_key import PUBLIC_KEY_TOKEN_SIZE
from .metadata.types import ASSEMBLY_FLAG_PUBLIC_KEY
from .pe.types import COMIMAGE_FLAGS_STRONGNAMESIGNED

if TYPE_CHECKING:
    from .assembly import ManagedAssembly

logger = logging.getLogger(__name__)

VERSION_SIZE = 8  # Four little-endian u16 values


@dataclass
class Modification:
    """Record of a modification made to the assembly file."""

    operation: str  # e.g., "set_version", "remove_signing"
    file_offset: int
    size: int
    description: str

    @property
    def end_offset(self) -> int:
        return self.file_offset + self.size


class _PatchWriter:
    """Bounds-checked writer that records each write as a Modification.

    Writes are queued with add() and only reach the file in commit(), after
    every queued range has been checked against the file size.
    """

    def __init__(self, operation: str):
        self._operation = operation
        self._pending: list[tuple[int, bytes, str]] = []
        self.modifications: list[Modification] = []

    def add(self, offset: int, data: bytes, description: str = "") -> None:
        self._pending.append(
            (offset, bytes(data), description or f"write {len(data)} bytes at 0x{offset:x}")
        )

    def commit(self, handle: BinaryIO) -> list[Modification]:
        file_size = _file_size(handle)
        for offset, data, _ in self._pending:
            if offset < 0 or offset + len(data) > file_size:
                raise ValueError(
                    f"Write would exceed file bounds: offset={offset}, "
                    f"len={len(data)}, file_size={file_size}"
                )

        for offset, data, description in self._pending:
            handle.seek(offset)
            handle.write(data)
            self.modifications.append(
                Modification(
                    operation=self._operation,
                    file_offset=offset,
                    size=len(data),
                    description=description,
                )
            )
        self._pending = []
        return self.modifications


def _file_size(handle: BinaryIO) -> int:
    handle.seek(0, 2)
    return handle.tell()


def pack_version(major: int, minor: int, build: int, revision: int) -> bytes:
    """Encode a version quad the way AssemblyRef stores it."""
    return struct.pack("<HHHH", major, minor, build, revision)


def parse_version(text: str) -> bytes:
    """Encode "a.b.c.d" as 8 version bytes.

    Raises:
        ValueError: Not four dot-separated integers in 0..65535
    """
    parts = text.split(".")
    if len(parts) != 4:
        raise ValueError(f"Version must have four parts: {text!r}")
    try:
        numbers = [int(part) for part in parts]
    except ValueError as e:
        raise ValueError(f"Invalid version {text!r}: {e}") from e
    if any(n < 0 or n > 0xFFFF for n in numbers):
        raise ValueError(f"Version parts must be 0..65535: {text!r}")
    return pack_version(*numbers)


def set_version_for_reference(
    assembly: "ManagedAssembly",
    name: str,
    version: bytes,
    public_key: bytes,
    strict: bool = False,
) -> list[Modification]:
    """Overwrite the version and public key token of a reference.

    The first AssemblyRef whose name equals name gets the 8 version bytes at
    its version offset and the 8 token bytes just past the length byte of its
    PublicKeyOrToken blob. The blob must already hold an 8-byte token: a null
    index, a full public key, or any other blob length is rejected before the
    file is opened for writing.

    Args:
        assembly: Loaded assembly
        name: Reference name, e.g. "mscorlib"
        version: 8 bytes, four little-endian u16 (see pack_version)
        public_key: 8-byte public key token
        strict: Raise ReferenceNotFound instead of doing nothing when no
            reference has the name

    Returns:
        Modifications applied (empty if the name was not found)

    Raises:
        ValueError: version or public_key is not 8 bytes
        FormatError: The reference has no 8-byte token blob to overwrite
        AssemblyIOError: The file could not be opened for writing
    """
    if len(version) != VERSION_SIZE:
        raise ValueError(f"Version must be {VERSION_SIZE} bytes, got {len(version)}")
    if len(public_key) != PUBLIC_KEY_TOKEN_SIZE:
        raise ValueError(
            f"Public key token must be {PUBLIC_KEY_TOKEN_SIZE} bytes, "
            f"got {len(public_key)}"
        )

    reference = assembly.find_reference(name)
    if reference is None:
        if strict:
            raise ReferenceNotFound(name)
        logger.warning(
            "No reference named %r in %s; nothing patched", name, assembly.location
        )
        return []

    if not reference.has_token_blob:
        if reference.public_key_or_token == 0:
            detail = "a null public key token"
        elif reference.has_full_public_key:
            detail = "a full public key"
        else:
            detail = f"a {reference.public_key_blob_length}-byte public key blob"
        raise FormatError(
            f"Reference {name!r} in {assembly.location} has {detail}; "
            f"only an {PUBLIC_KEY_TOKEN_SIZE}-byte token can be replaced in place"
        )

    token_offset = reference.public_key_offset + 1
    writer = _PatchWriter("set_version")
    writer.add(
        reference.version_offset,
        version,
        f"version of {name} at 0x{reference.version_offset:x}",
    )
    writer.add(
        token_offset,
        public_key,
        f"public key token of {name} at 0x{token_offset:x}",
    )
    with assembly.reopened_for_write() as handle:
        writer.commit(handle)

    logger.info(
        "Set %s to version %s token %s in %s",
        name,
        ".".join(str(v) for v in struct.unpack("<HHHH", version)),
        bytes(public_key).hex(),
        assembly.location,
    )
    return writer.modifications


def remove_signing(assembly: "ManagedAssembly") -> list[Modification]:
    """Strip the strong-name signature markers from the assembly.

    Clears the CLR STRONGNAMESIGNED flag and the strong-name signature
    directory, writes the whole CLR header back, clears the Assembly
    PublicKey flag, and zeroes the Assembly public key blob index. The key
    blob itself stays in #Blob, orphaned, so the file length is unchanged.

    The in-memory CLR header and Assembly row are replaced only once every
    write has reached the file.

    Raises:
        ValueError: A target range lies outside the file
        AssemblyIOError: The file could not be opened for writing
    """
    image = assembly.image
    definition = assembly.definition
    clr_header = replace(
        image.clr_header,
        Flags=image.clr_header.Flags & ~COMIMAGE_FLAGS_STRONGNAMESIGNED,
        StrongNameSignatureRVA=0,
        StrongNameSignatureSize=0,
    )

    updated_definition = None
    writer = _PatchWriter("remove_signing")
    writer.add(
        image.clr_header_offset,
        clr_header.to_bytes(),
        f"CLR header at 0x{image.clr_header_offset:x}",
    )
    if definition is None:
        logger.warning(
            "%s has no Assembly row; only the CLR header was updated",
            assembly.location,
        )
    else:
        flags = definition.flags & ~ASSEMBLY_FLAG_PUBLIC_KEY
        writer.add(
            definition.flags_offset,
            struct.pack("<I", flags),
            f"assembly flags at 0x{definition.flags_offset:x}",
        )
        writer.add(
            definition.public_key_index_offset,
            b"\x00" * assembly.widths.blob,
            f"assembly public key index at 0x{definition.public_key_index_offset:x}",
        )
        updated_definition = replace(
            definition, flags=flags, public_key_index=0, public_key=b""
        )

    with assembly.reopened_for_write() as handle:
        writer.commit(handle)

    image.clr_header = clr_header
    if updated_definition is not None:
        assembly.definition = updated_definition

    logger.info("Removed signing from %s", assembly.location)
    return writer.modifications


def remove_signed_references(
    assembly: "ManagedAssembly",
    name_to_assembly: Mapping[str, "ManagedAssembly"],
    marked_for_stripping: Collection["ManagedAssembly"],
) -> list[Modification]:
    """Null the public key of references to assemblies being unsigned.

    For every reference whose name maps (through name_to_assembly) to an
    assembly in marked_for_stripping, the PublicKeyOrToken blob index is
    zeroed so the reference no longer demands a strong name.

    Raises:
        ValueError: A target range lies outside the file
        AssemblyIOError: The file could not be opened for writing
    """
    targets = [
        reference
        for reference in assembly.get_referenced_assemblies()
        if name_to_assembly.get(reference.name) is not None
        and name_to_assembly[reference.name] in marked_for_stripping
    ]
    if not targets:
        logger.debug("No marked references in %s", assembly.location)
        return []

    writer = _PatchWriter("remove_signed_reference")
    for reference in targets:
        writer.add(
            reference.public_key_or_token_offset,
            b"\x00" * assembly.widths.blob,
            f"public key index of {reference.name} "
            f"at 0x{reference.public_key_or_token_offset:x}",
        )
    with assembly.reopened_for_write() as handle:
        writer.commit(handle)

    for reference in targets:
        logger.info(
            "Removed public key from reference %s in %s",
            reference.name,
            assembly.location,
        )
    return writer.modifications
