"""
PE header, RVA translation and CLR header reading.

PeImage captures the parts of the PE container a managed module needs:
where the PE header sits, the section table, and the CLR runtime header
with the file offset it was read from (so sign removal can write it back).

Reading order matters for error reporting: the DOS magic is checked first,
then the COM descriptor directory (a zero RVA means a native image), then
the section table, and only then is the CLR header translated and decoded.
"""

import logging
import struct
from dataclasses import dataclass

from ..cursor import FileCursor
from ..errors import FormatError, InvalidOffset, NotManagedAssembly
from .types import (
    CLRHeader,
    DataDirectory,
    Section,
    DOS_MAGIC,
    PE_SIGNATURE,
    PE_SIGNATURE_OFFSET_LOCATION,
    PE_NUMBER_OF_SECTIONS_OFFSET,
    PE_CLR_DIRECTORY_OFFSET,
    PE_SECTION_TABLE_OFFSET,
    CLR_HEADER_MAX_SIZE,
    SECTION_HEADER_SIZE,
)

logger = logging.getLogger(__name__)

IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B
OPTIONAL_HEADER_OFFSET = 0x18  # PE signature (4) + COFF header (20)


@dataclass
class PeImage:
    """Parsed PE container of a managed module."""

    pe_offset: int
    sections: list[Section]
    clr_directory: DataDirectory
    clr_header: CLRHeader
    clr_header_offset: int

    # PE/COFF caps the section count at 96
    MAX_NUMBER_OF_SECTIONS = 96

    @classmethod
    def read(cls, cursor: FileCursor) -> "PeImage":
        """Read PE header, section table and CLR header.

        Raises:
            FormatError: Bad DOS magic, PE signature or oversize CLR header
            NotManagedAssembly: The COM descriptor directory RVA is zero
            InvalidOffset: The CLR header RVA is not inside any section
        """
        pe_offset = read_pe_offset(cursor)

        cursor.seek(pe_offset + PE_CLR_DIRECTORY_OFFSET)
        clr_directory = DataDirectory.from_bytes(cursor.read(DataDirectory.SIZE))
        if clr_directory.VirtualAddress == 0:
            raise NotManagedAssembly("Image has no CLR runtime header")
        if clr_directory.Size > CLR_HEADER_MAX_SIZE:
            raise FormatError(
                f"CLR header size 0x{clr_directory.Size:x} exceeds "
                f"maximum 0x{CLR_HEADER_MAX_SIZE:x}"
            )

        sections = cls._read_sections(cursor, pe_offset)

        clr_header_offset = rva_to_file_offset(sections, clr_directory.VirtualAddress)
        cursor.seek(clr_header_offset)
        clr_header = CLRHeader.from_bytes(cursor.read(CLRHeader.SIZE))

        logger.debug(
            "CLR header at 0x%x: runtime %d.%d, metadata RVA 0x%x size 0x%x, flags 0x%x",
            clr_header_offset,
            clr_header.MajorRuntimeVersion,
            clr_header.MinorRuntimeVersion,
            clr_header.MetaDataRVA,
            clr_header.MetaDataSize,
            clr_header.Flags,
        )

        return cls(
            pe_offset=pe_offset,
            sections=sections,
            clr_directory=clr_directory,
            clr_header=clr_header,
            clr_header_offset=clr_header_offset,
        )

    @classmethod
    def _read_sections(cls, cursor: FileCursor, pe_offset: int) -> list[Section]:
        """Parse all section headers."""
        cursor.seek(pe_offset + PE_NUMBER_OF_SECTIONS_OFFSET)
        num_sections = cursor.read_u16()
        if num_sections > cls.MAX_NUMBER_OF_SECTIONS:
            raise FormatError(
                f"NumberOfSections ({num_sections}) exceeds maximum "
                f"({cls.MAX_NUMBER_OF_SECTIONS})"
            )

        cursor.seek(pe_offset + PE_SECTION_TABLE_OFFSET)
        raw = cursor.read(num_sections * SECTION_HEADER_SIZE)
        sections = [
            Section.from_bytes(raw, i * SECTION_HEADER_SIZE)
            for i in range(num_sections)
        ]
        logger.debug(
            "Read %d section(s): %s",
            num_sections,
            ", ".join(s.name_str for s in sections),
        )
        return sections

    def rva_to_file_offset(self, rva: int) -> int:
        """Convert RVA to file offset using the section table."""
        return rva_to_file_offset(self.sections, rva)


def read_pe_offset(cursor: FileCursor) -> int:
    """Validate the DOS and PE signatures and return e_lfanew."""
    cursor.seek(0)
    magic = cursor.read(2)
    if struct.unpack("<H", magic)[0] != DOS_MAGIC:
        raise FormatError(f"Not a DOS/PE file (bad magic: {magic!r})")

    cursor.seek(PE_SIGNATURE_OFFSET_LOCATION)
    pe_offset = cursor.read_u32()

    cursor.seek(pe_offset)
    signature = cursor.read(4)
    if signature != PE_SIGNATURE:
        raise FormatError(f"Invalid PE signature: {signature!r}")

    cursor.seek(pe_offset + OPTIONAL_HEADER_OFFSET)
    if cursor.read_u16() == IMAGE_NT_OPTIONAL_HDR64_MAGIC:
        raise FormatError("PE32+ images are not supported")

    return pe_offset


def rva_to_file_offset(sections: list[Section], rva: int) -> int:
    """Translate an RVA through the first section that covers it.

    Raises:
        InvalidOffset: If no section contains the RVA
    """
    for section in sections:
        if section.contains_rva(rva):
            return rva - section.VirtualAddress + section.PointerToRawData
    raise InvalidOffset(rva)
