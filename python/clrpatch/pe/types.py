"""
PE/COFF and CLR header type definitions for managed 32-bit images.

Only the parts of the PE container a managed module needs are described
here: the DOS stub pointer, the section table, the COM descriptor data
directory and the CLR runtime header (IMAGE_COR20_HEADER).

Records are decoded field by field with struct, never by overlaying a raw
buffer, so the layout is independent of host alignment and endianness.

References:
- Microsoft PE/COFF Specification
- ECMA-335, Partition II, section 25.3.3 (CLI header)
"""

import struct
from dataclasses import dataclass
from typing import ClassVar

from ..errors import FormatError

# =============================================================================
# Constants
# =============================================================================

# DOS Header
DOS_MAGIC = 0x5A4D  # "MZ" in little-endian
DOS_MAGIC_BYTES = b"MZ"
PE_SIGNATURE = b"PE\x00\x00"
PE_SIGNATURE_OFFSET_LOCATION = 0x3C  # Offset in DOS header where e_lfanew lives

# Offsets relative to the PE signature for a PE32 optional header
PE_NUMBER_OF_SECTIONS_OFFSET = 0x06
PE_CLR_DIRECTORY_OFFSET = 0xE8  # COM descriptor data directory
PE_SECTION_TABLE_OFFSET = 0xF8

# CLR header flags (COMIMAGE_FLAGS_*)
COMIMAGE_FLAGS_ILONLY = 0x00000001
COMIMAGE_FLAGS_STRONGNAMESIGNED = 0x00000008

# Upper bound on the CLR header directory size; larger values mean a
# corrupt or foreign file.
CLR_HEADER_MAX_SIZE = 0x1000

# Structure sizes
SECTION_HEADER_SIZE = 40
CLR_HEADER_SIZE = 72


# =============================================================================
# Structures
# =============================================================================


@dataclass(frozen=True)
class DataDirectory:
    """Data directory entry (IMAGE_DATA_DIRECTORY)."""

    VirtualAddress: int  # RVA of the data
    Size: int

    STRUCT_FMT: ClassVar[str] = "<II"
    SIZE: ClassVar[int] = 8

    @classmethod
    def from_bytes(cls, data: bytes | bytearray, offset: int = 0) -> "DataDirectory":
        """Parse data directory from binary data."""
        if len(data) < offset + cls.SIZE:
            raise FormatError("Data too short for data directory")
        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        return cls(*fields)


@dataclass(frozen=True)
class Section:
    """PE/COFF section header (IMAGE_SECTION_HEADER).

    Each section header is 40 bytes.
    """

    Name: bytes  # 8 bytes, null-padded (NOT null-terminated if 8 chars)
    VirtualSize: int
    VirtualAddress: int  # RVA of section
    SizeOfRawData: int
    PointerToRawData: int  # File offset
    PointerToRelocations: int
    PointerToLinenumbers: int
    NumberOfRelocations: int
    NumberOfLinenumbers: int
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<8sIIIIIIHHI"
    SIZE: ClassVar[int] = 40

    @classmethod
    def from_bytes(cls, data: bytes | bytearray, offset: int = 0) -> "Section":
        """Parse section header from binary data."""
        if len(data) < offset + cls.SIZE:
            raise FormatError(
                f"Data too short for section header: {len(data)} < {offset + cls.SIZE}"
            )

        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        return cls(*fields)

    @property
    def name_str(self) -> str:
        """Get section name as string (strips null padding)."""
        null_pos = self.Name.find(b"\x00")
        if null_pos >= 0:
            return self.Name[:null_pos].decode("ascii", errors="replace")
        return self.Name.decode("ascii", errors="replace")

    @property
    def end_rva(self) -> int:
        """RVA of end of section in memory."""
        return self.VirtualAddress + self.VirtualSize

    @property
    def end_file_offset(self) -> int:
        """File offset of end of section data."""
        return self.PointerToRawData + self.SizeOfRawData

    def contains_rva(self, rva: int) -> bool:
        """Check if an RVA falls within this section."""
        return self.VirtualAddress <= rva < self.end_rva


@dataclass
class CLRHeader:
    """CLR runtime header (IMAGE_COR20_HEADER).

    72 bytes. Directory-valued fields are kept as flat RVA/size pairs so the
    record serializes back exactly as it was read. Sign removal is the only
    operation that mutates it.
    """

    cb: int
    MajorRuntimeVersion: int
    MinorRuntimeVersion: int
    MetaDataRVA: int
    MetaDataSize: int
    Flags: int
    EntryPoint: int  # Token, or RVA for a native entry point
    ResourcesRVA: int
    ResourcesSize: int
    StrongNameSignatureRVA: int
    StrongNameSignatureSize: int
    CodeManagerTableRVA: int
    CodeManagerTableSize: int
    VTableFixupsRVA: int
    VTableFixupsSize: int
    ExportAddressTableJumpsRVA: int
    ExportAddressTableJumpsSize: int
    ManagedNativeHeaderRVA: int
    ManagedNativeHeaderSize: int

    STRUCT_FMT: ClassVar[str] = "<IHH" "IIII" "IIIIIIIIIIII"
    SIZE: ClassVar[int] = CLR_HEADER_SIZE

    @classmethod
    def from_bytes(cls, data: bytes | bytearray, offset: int = 0) -> "CLRHeader":
        """Parse CLR header from binary data."""
        if len(data) < offset + cls.SIZE:
            raise FormatError(
                f"Data too short for CLR header: {len(data)} < {offset + cls.SIZE}"
            )

        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        return cls(*fields)

    def to_bytes(self) -> bytes:
        """Serialize CLR header to binary data."""
        return struct.pack(
            self.STRUCT_FMT,
            self.cb,
            self.MajorRuntimeVersion,
            self.MinorRuntimeVersion,
            self.MetaDataRVA,
            self.MetaDataSize,
            self.Flags,
            self.EntryPoint,
            self.ResourcesRVA,
            self.ResourcesSize,
            self.StrongNameSignatureRVA,
            self.StrongNameSignatureSize,
            self.CodeManagerTableRVA,
            self.CodeManagerTableSize,
            self.VTableFixupsRVA,
            self.VTableFixupsSize,
            self.ExportAddressTableJumpsRVA,
            self.ExportAddressTableJumpsSize,
            self.ManagedNativeHeaderRVA,
            self.ManagedNativeHeaderSize,
        )

    @property
    def is_strong_name_signed(self) -> bool:
        """Check if the STRONGNAMESIGNED flag is set."""
        return bool(self.Flags & COMIMAGE_FLAGS_STRONGNAMESIGNED)

    @property
    def is_il_only(self) -> bool:
        """Check if the image contains only IL."""
        return bool(self.Flags & COMIMAGE_FLAGS_ILONLY)


# =============================================================================
# Helper Functions
# =============================================================================


def round_up_to_alignment(value: int, alignment: int) -> int:
    """Round value up to next alignment boundary."""
    if alignment == 0:
        return value
    return (value + alignment - 1) & ~(alignment - 1)
