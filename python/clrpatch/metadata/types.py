"""
CLR metadata record definitions.

References:
- ECMA-335, Partition II, section 24 (metadata physical layout)
- ECMA-335, Partition II, section 22 (metadata logical format: tables)
"""

from dataclasses import dataclass, field

from .public_key import PUBLIC_KEY_TOKEN_SIZE

# =============================================================================
# Constants
# =============================================================================

METADATA_SIGNATURE = 0x424A5342  # "BSJB"

# Stream names
STREAM_STRINGS = "#Strings"
STREAM_TABLES = "#~"
STREAM_USER_STRINGS = "#US"
STREAM_GUID = "#GUID"
STREAM_BLOB = "#Blob"
REQUIRED_STREAMS = (
    STREAM_STRINGS,
    STREAM_TABLES,
    STREAM_USER_STRINGS,
    STREAM_GUID,
    STREAM_BLOB,
)

# #~ HeapSizes bits
HEAP_STRING_WIDE = 0x01
HEAP_GUID_WIDE = 0x02
HEAP_BLOB_WIDE = 0x04

# AssemblyFlags
ASSEMBLY_FLAG_PUBLIC_KEY = 0x0001  # Blob holds the full key, not a token

# Table ids
TABLE_MODULE = 0x00
TABLE_TYPE_REF = 0x01
TABLE_TYPE_DEF = 0x02
TABLE_FIELD_PTR = 0x03
TABLE_FIELD = 0x04
TABLE_METHOD_PTR = 0x05
TABLE_METHOD_DEF = 0x06
TABLE_PARAM_PTR = 0x07
TABLE_PARAM = 0x08
TABLE_INTERFACE_IMPL = 0x09
TABLE_MEMBER_REF = 0x0A
TABLE_CONSTANT = 0x0B
TABLE_CUSTOM_ATTRIBUTE = 0x0C
TABLE_FIELD_MARSHAL = 0x0D
TABLE_DECL_SECURITY = 0x0E
TABLE_CLASS_LAYOUT = 0x0F
TABLE_FIELD_LAYOUT = 0x10
TABLE_STANDALONE_SIG = 0x11
TABLE_EVENT_MAP = 0x12
TABLE_EVENT_PTR = 0x13
TABLE_EVENT = 0x14
TABLE_PROPERTY_MAP = 0x15
TABLE_PROPERTY_PTR = 0x16
TABLE_PROPERTY = 0x17
TABLE_METHOD_SEMANTICS = 0x18
TABLE_METHOD_IMPL = 0x19
TABLE_MODULE_REF = 0x1A
TABLE_TYPE_SPEC = 0x1B
TABLE_IMPL_MAP = 0x1C
TABLE_FIELD_RVA = 0x1D
TABLE_ENC_LOG = 0x1E
TABLE_ENC_MAP = 0x1F
TABLE_ASSEMBLY = 0x20
TABLE_ASSEMBLY_PROCESSOR = 0x21
TABLE_ASSEMBLY_OS = 0x22
TABLE_ASSEMBLY_REF = 0x23
TABLE_ASSEMBLY_REF_PROCESSOR = 0x24
TABLE_ASSEMBLY_REF_OS = 0x25
TABLE_FILE = 0x26
TABLE_EXPORTED_TYPE = 0x27
TABLE_MANIFEST_RESOURCE = 0x28
TABLE_NESTED_CLASS = 0x29
TABLE_GENERIC_PARAM = 0x2A
TABLE_METHOD_SPEC = 0x2B
TABLE_GENERIC_PARAM_CONSTRAINT = 0x2C

MAX_TABLES = 64


# =============================================================================
# Structures
# =============================================================================


@dataclass(frozen=True)
class StreamHeader:
    """Metadata stream header with its offset already made absolute."""

    name: str
    offset: int  # Absolute file offset
    size: int

    @property
    def end_offset(self) -> int:
        return self.offset + self.size


@dataclass(frozen=True)
class MetadataRoot:
    """Metadata root (the "BSJB" header) and its stream directory."""

    signature: int
    major_version: int
    minor_version: int
    version: str
    file_offset: int
    streams: tuple[StreamHeader, ...]

    def find_stream(self, name: str) -> StreamHeader | None:
        """Find a stream by exact name (first match wins)."""
        for stream in self.streams:
            if stream.name == name:
                return stream
        return None

    def stream(self, name: str) -> StreamHeader:
        """Get a stream that is known to be present."""
        found = self.find_stream(name)
        if found is None:
            raise KeyError(name)
        return found


@dataclass(frozen=True)
class TableStreamHeader:
    """The fixed prefix and row counts of the #~ stream."""

    major_version: int
    minor_version: int
    heap_sizes: int
    valid_mask: int
    sorted_mask: int
    row_counts: tuple[int, ...]  # MAX_TABLES entries, zero for absent tables
    rows_offset: int  # File offset of the first table row

    def is_present(self, table_id: int) -> bool:
        return bool(self.valid_mask & (1 << table_id))

    @property
    def present_tables(self) -> list[int]:
        """Present table ids in ascending order."""
        return [i for i in range(MAX_TABLES) if self.is_present(i)]


@dataclass(frozen=True)
class AssemblyRef:
    """One AssemblyRef row with the file offsets needed to patch it."""

    version_offset: int
    major_version: int
    minor_version: int
    build_number: int
    revision_number: int
    flags: int
    flags_offset: int
    public_key_or_token: int  # Blob heap index
    public_key_or_token_offset: int  # File offset of the blob index field
    public_key_offset: int  # File offset of the blob itself
    public_key_blob_length: int  # Decoded length prefix of that blob
    public_key: bytes  # Resolved token (8 bytes when present)
    name_index: int
    name_index_offset: int
    name: str
    culture_index: int
    culture: str
    hash_value_index: int

    @property
    def version(self) -> tuple[int, int, int, int]:
        return (
            self.major_version,
            self.minor_version,
            self.build_number,
            self.revision_number,
        )

    @property
    def version_str(self) -> str:
        return ".".join(str(part) for part in self.version)

    @property
    def has_full_public_key(self) -> bool:
        """Check if the blob holds a full public key rather than a token."""
        return bool(self.flags & ASSEMBLY_FLAG_PUBLIC_KEY)

    @property
    def has_token_blob(self) -> bool:
        """Check if the blob is an 8-byte token that can be overwritten in place."""
        return (
            self.public_key_or_token != 0
            and not self.has_full_public_key
            and self.public_key_blob_length == PUBLIC_KEY_TOKEN_SIZE
        )

    @property
    def public_key_token_hex(self) -> str:
        return self.public_key.hex()


@dataclass(frozen=True)
class AssemblyDefinition:
    """The module's own Assembly row."""

    hash_alg_id: int
    major_version: int
    minor_version: int
    build_number: int
    revision_number: int
    flags: int
    flags_offset: int
    public_key_index: int
    public_key_index_offset: int
    name: str
    culture: str
    public_key: bytes = field(default=b"")  # Resolved token

    @property
    def version(self) -> tuple[int, int, int, int]:
        return (
            self.major_version,
            self.minor_version,
            self.build_number,
            self.revision_number,
        )

    @property
    def has_public_key(self) -> bool:
        return bool(self.flags & ASSEMBLY_FLAG_PUBLIC_KEY)
