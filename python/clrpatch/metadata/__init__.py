"""
CLR metadata reading.

- types: metadata records and table ids
- root: metadata root and stream directory
- index_widths: heap/coded/simple index width resolution
- schema: per-table column layouts
- tables: the table walker that extracts Module, Assembly and AssemblyRef
- public_key: blob decoding and public key token derivation
"""

from .index_widths import (
    CodedIndex,
    IndexWidths,
    CODED_INDEXES,
    coded_index_width,
    simple_index_width,
    resolve_index_widths,
    read_table_stream_header,
)
from .public_key import public_key_to_token, read_compressed_uint
from .root import read_metadata_root
from .schema import TABLE_LAYOUTS, TableLayout, Column, get_layout, table_name
from .tables import TableWalker, TableWalkResult, describe_tables
from .types import (
    AssemblyDefinition,
    AssemblyRef,
    MetadataRoot,
    StreamHeader,
    TableStreamHeader,
    METADATA_SIGNATURE,
    REQUIRED_STREAMS,
    ASSEMBLY_FLAG_PUBLIC_KEY,
)

__all__ = [
    "CodedIndex",
    "IndexWidths",
    "CODED_INDEXES",
    "coded_index_width",
    "simple_index_width",
    "resolve_index_widths",
    "read_table_stream_header",
    "public_key_to_token",
    "read_compressed_uint",
    "read_metadata_root",
    "TABLE_LAYOUTS",
    "TableLayout",
    "Column",
    "get_layout",
    "table_name",
    "TableWalker",
    "TableWalkResult",
    "describe_tables",
    "AssemblyDefinition",
    "AssemblyRef",
    "MetadataRoot",
    "StreamHeader",
    "TableStreamHeader",
    "METADATA_SIGNATURE",
    "REQUIRED_STREAMS",
    "ASSEMBLY_FLAG_PUBLIC_KEY",
]
