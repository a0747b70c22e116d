"""
Index-width resolution for the #~ table stream.

Every heap index, simple row index and coded index in a table row is either
2 or 4 bytes wide. The widths depend only on the HeapSizes bitmask and the
per-table row counts, so they are computed once from the stream header
before any row is read.

A coded index packs a tag (which table) into its low bits and the row number
into the rest. With n tag bits, a 2-byte coded index can address rows below
2**(16 - n); if any contributing table has that many rows or more, the index
is 4 bytes (ECMA-335 II.24.2.6).
"""

import logging
import math
from dataclasses import dataclass

from ..cursor import FileCursor
from .types import (
    TableStreamHeader,
    HEAP_BLOB_WIDE,
    HEAP_GUID_WIDE,
    HEAP_STRING_WIDE,
    MAX_TABLES,
    TABLE_ASSEMBLY,
    TABLE_ASSEMBLY_REF,
    TABLE_DECL_SECURITY,
    TABLE_EVENT,
    TABLE_EXPORTED_TYPE,
    TABLE_FIELD,
    TABLE_FILE,
    TABLE_GENERIC_PARAM,
    TABLE_GENERIC_PARAM_CONSTRAINT,
    TABLE_INTERFACE_IMPL,
    TABLE_MANIFEST_RESOURCE,
    TABLE_MEMBER_REF,
    TABLE_METHOD_DEF,
    TABLE_METHOD_SPEC,
    TABLE_MODULE,
    TABLE_MODULE_REF,
    TABLE_PARAM,
    TABLE_PROPERTY,
    TABLE_STANDALONE_SIG,
    TABLE_TYPE_DEF,
    TABLE_TYPE_REF,
    TABLE_TYPE_SPEC,
)

logger = logging.getLogger(__name__)

TABLE_STREAM_PREFIX_SIZE = 24

# Simple row indices switch to 4 bytes at this row count
SIMPLE_INDEX_THRESHOLD = 1 << 15


@dataclass(frozen=True)
class CodedIndex:
    """A coded index category: its name and tag-ordered candidate tables.

    None marks a tag value that is reserved (CustomAttributeType has three).
    """

    name: str
    tables: tuple[int | None, ...]

    @property
    def tag_bits(self) -> int:
        return max(1, math.ceil(math.log2(len(self.tables))))

    @property
    def threshold(self) -> int:
        """Row count at which this coded index needs 4 bytes."""
        return 1 << (16 - self.tag_bits)


TYPE_DEF_OR_REF = CodedIndex(
    "TypeDefOrRef", (TABLE_TYPE_DEF, TABLE_TYPE_REF, TABLE_TYPE_SPEC)
)
HAS_CONSTANT = CodedIndex("HasConstant", (TABLE_FIELD, TABLE_PARAM, TABLE_PROPERTY))
HAS_CUSTOM_ATTRIBUTE = CodedIndex(
    "HasCustomAttribute",
    (
        TABLE_METHOD_DEF,
        TABLE_FIELD,
        TABLE_TYPE_REF,
        TABLE_TYPE_DEF,
        TABLE_PARAM,
        TABLE_INTERFACE_IMPL,
        TABLE_MEMBER_REF,
        TABLE_MODULE,
        TABLE_DECL_SECURITY,
        TABLE_PROPERTY,
        TABLE_EVENT,
        TABLE_STANDALONE_SIG,
        TABLE_MODULE_REF,
        TABLE_TYPE_SPEC,
        TABLE_ASSEMBLY,
        TABLE_ASSEMBLY_REF,
        TABLE_FILE,
        TABLE_EXPORTED_TYPE,
        TABLE_MANIFEST_RESOURCE,
        TABLE_GENERIC_PARAM,
        TABLE_GENERIC_PARAM_CONSTRAINT,
        TABLE_METHOD_SPEC,
    ),
)
HAS_FIELD_MARSHAL = CodedIndex("HasFieldMarshal", (TABLE_FIELD, TABLE_PARAM))
HAS_DECL_SECURITY = CodedIndex(
    "HasDeclSecurity", (TABLE_TYPE_DEF, TABLE_METHOD_DEF, TABLE_ASSEMBLY)
)
MEMBER_REF_PARENT = CodedIndex(
    "MemberRefParent",
    (
        TABLE_TYPE_DEF,
        TABLE_TYPE_REF,
        TABLE_MODULE_REF,
        TABLE_METHOD_DEF,
        TABLE_TYPE_SPEC,
    ),
)
HAS_SEMANTICS = CodedIndex("HasSemantics", (TABLE_EVENT, TABLE_PROPERTY))
METHOD_DEF_OR_REF = CodedIndex("MethodDefOrRef", (TABLE_METHOD_DEF, TABLE_MEMBER_REF))
MEMBER_FORWARDED = CodedIndex("MemberForwarded", (TABLE_FIELD, TABLE_METHOD_DEF))
IMPLEMENTATION = CodedIndex(
    "Implementation", (TABLE_FILE, TABLE_ASSEMBLY_REF, TABLE_EXPORTED_TYPE)
)
CUSTOM_ATTRIBUTE_TYPE = CodedIndex(
    "CustomAttributeType", (None, None, TABLE_METHOD_DEF, TABLE_MEMBER_REF, None)
)
RESOLUTION_SCOPE = CodedIndex(
    "ResolutionScope",
    (TABLE_MODULE, TABLE_MODULE_REF, TABLE_ASSEMBLY_REF, TABLE_TYPE_REF),
)
TYPE_OR_METHOD_DEF = CodedIndex("TypeOrMethodDef", (TABLE_TYPE_DEF, TABLE_METHOD_DEF))

CODED_INDEXES: tuple[CodedIndex, ...] = (
    TYPE_DEF_OR_REF,
    HAS_CONSTANT,
    HAS_CUSTOM_ATTRIBUTE,
    HAS_FIELD_MARSHAL,
    HAS_DECL_SECURITY,
    MEMBER_REF_PARENT,
    HAS_SEMANTICS,
    METHOD_DEF_OR_REF,
    MEMBER_FORWARDED,
    IMPLEMENTATION,
    CUSTOM_ATTRIBUTE_TYPE,
    RESOLUTION_SCOPE,
    TYPE_OR_METHOD_DEF,
)


@dataclass(frozen=True)
class IndexWidths:
    """Resolved byte width of every index kind used by the table schema."""

    string: int
    guid: int
    blob: int
    coded: dict[str, int]  # CodedIndex.name -> width
    tables: dict[int, int]  # table id -> simple row index width

    def coded_width(self, coded_index: CodedIndex) -> int:
        return self.coded[coded_index.name]

    def table_width(self, table_id: int) -> int:
        return self.tables[table_id]


def coded_index_width(coded_index: CodedIndex, row_counts: tuple[int, ...]) -> int:
    """Width of a coded index given per-table row counts."""
    max_rows = max(
        (row_counts[t] for t in coded_index.tables if t is not None), default=0
    )
    return 4 if max_rows >= coded_index.threshold else 2


def simple_index_width(table_id: int, row_counts: tuple[int, ...]) -> int:
    """Width of a simple row index into table_id."""
    return 4 if row_counts[table_id] >= SIMPLE_INDEX_THRESHOLD else 2


def resolve_index_widths(heap_sizes: int, row_counts: tuple[int, ...]) -> IndexWidths:
    """Compute all index widths from the HeapSizes bits and row counts."""
    if len(row_counts) != MAX_TABLES:
        raise ValueError(f"Expected {MAX_TABLES} row counts, got {len(row_counts)}")

    return IndexWidths(
        string=4 if heap_sizes & HEAP_STRING_WIDE else 2,
        guid=4 if heap_sizes & HEAP_GUID_WIDE else 2,
        blob=4 if heap_sizes & HEAP_BLOB_WIDE else 2,
        coded={ci.name: coded_index_width(ci, row_counts) for ci in CODED_INDEXES},
        tables={t: simple_index_width(t, row_counts) for t in range(MAX_TABLES)},
    )


def read_table_stream_header(cursor: FileCursor, offset: int) -> TableStreamHeader:
    """Read the #~ prefix and the row counts of present tables."""
    cursor.seek(offset)
    (
        _reserved,
        major,
        minor,
        heap_sizes,
        _reserved2,
        valid_mask,
        sorted_mask,
    ) = cursor.read_struct("<IBBBBQQ")

    row_counts = [0] * MAX_TABLES
    for table_id in range(MAX_TABLES):
        if valid_mask & (1 << table_id):
            row_counts[table_id] = cursor.read_u32()

    header = TableStreamHeader(
        major_version=major,
        minor_version=minor,
        heap_sizes=heap_sizes,
        valid_mask=valid_mask,
        sorted_mask=sorted_mask,
        row_counts=tuple(row_counts),
        rows_offset=cursor.tell(),
    )
    logger.debug(
        "#~ %d.%d heap sizes 0x%02x, rows: %s",
        major,
        minor,
        heap_sizes,
        {f"0x{t:02x}": row_counts[t] for t in header.present_tables},
    )
    return header
