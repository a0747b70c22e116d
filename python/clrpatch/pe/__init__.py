"""
PE/COFF container reading for managed modules.

- types: Section, DataDirectory and CLRHeader records plus constants
- reader: PeImage (PE header, section table, CLR header) and RVA translation
"""

from .reader import PeImage, read_pe_offset, rva_to_file_offset
from .types import (
    CLRHeader,
    DataDirectory,
    Section,
    DOS_MAGIC,
    PE_SIGNATURE,
    CLR_HEADER_MAX_SIZE,
    CLR_HEADER_SIZE,
    SECTION_HEADER_SIZE,
    COMIMAGE_FLAGS_ILONLY,
    COMIMAGE_FLAGS_STRONGNAMESIGNED,
    round_up_to_alignment,
)

__all__ = [
    "PeImage",
    "read_pe_offset",
    "rva_to_file_offset",
    "CLRHeader",
    "DataDirectory",
    "Section",
    "DOS_MAGIC",
    "PE_SIGNATURE",
    "CLR_HEADER_MAX_SIZE",
    "CLR_HEADER_SIZE",
    "SECTION_HEADER_SIZE",
    "COMIMAGE_FLAGS_ILONLY",
    "COMIMAGE_FLAGS_STRONGNAMESIGNED",
    "round_up_to_alignment",
]
