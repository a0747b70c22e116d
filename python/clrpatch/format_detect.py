"""
Binary format detection utilities.

Cheap checks that decide whether a file is worth a full load: a PE image at
all, and a PE image with a CLR runtime header directory. Neither check reads
the metadata, so a positive answer does not guarantee load() succeeds.
"""

from pathlib import Path

from .pe.types import (
    DOS_MAGIC_BYTES,
    PE_SIGNATURE,
    PE_CLR_DIRECTORY_OFFSET,
    PE_SIGNATURE_OFFSET_LOCATION,
)

FORMAT_MANAGED = "managed"
FORMAT_NATIVE = "native"


class UnsupportedBinaryFormat(ValueError):
    """Raised when a file is not a PE image."""

    pass


def detect_binary_format(path: Path) -> str:
    """Detect whether a PE image is managed or native.

    Args:
        path: Path to binary file

    Returns:
        "managed" if the CLR header directory is set, "native" otherwise

    Raises:
        UnsupportedBinaryFormat: If the file is not a PE image
        FileNotFoundError: If the file doesn't exist
    """
    with open(path, "rb") as f:
        header = f.read(0x40)

        if len(header) < 0x40 or header[:2] != DOS_MAGIC_BYTES:
            raise UnsupportedBinaryFormat(f"Not a DOS/PE file: {path}")

        pe_offset = int.from_bytes(
            header[PE_SIGNATURE_OFFSET_LOCATION : PE_SIGNATURE_OFFSET_LOCATION + 4],
            "little",
        )
        # Validate PE offset is reasonable (within first 1MB)
        if pe_offset < 0x40 or pe_offset > 0x100000:
            raise UnsupportedBinaryFormat(
                f"Invalid PE header offset {pe_offset:#x}: {path}"
            )

        f.seek(pe_offset)
        if f.read(4) != PE_SIGNATURE:
            raise UnsupportedBinaryFormat(f"Missing PE signature: {path}")

        f.seek(pe_offset + PE_CLR_DIRECTORY_OFFSET)
        clr_rva = int.from_bytes(f.read(4), "little")

    return FORMAT_MANAGED if clr_rva else FORMAT_NATIVE


def is_pe_binary(path: Path) -> bool:
    """Check if a file is a PE image (managed or native)."""
    try:
        detect_binary_format(path)
        return True
    except (UnsupportedBinaryFormat, FileNotFoundError):
        return False


def is_managed_assembly(path: Path) -> bool:
    """Check if a file is a PE image with a CLR header directory."""
    try:
        return detect_binary_format(path) == FORMAT_MANAGED
    except (UnsupportedBinaryFormat, FileNotFoundError):
        return False
