"""
Metadata table walker.

Rows of the #~ stream are packed back to back, table after table, in
ascending table-id order, with no per-table offsets. Reaching the
AssemblyRef table therefore means consuming every present table before it
with exactly the right row size.

Only Module, Assembly and AssemblyRef rows are decoded. Every other present
table is skipped by row count times row size, which is the same number of
bytes its columns occupy.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from ..cursor import FileCursor
from ..errors import FormatError
from .index_widths import IndexWidths
from .public_key import read_compressed_uint, read_public_key_token
from .schema import TableLayout, get_layout, table_name
from .types import (
    AssemblyDefinition,
    AssemblyRef,
    MetadataRoot,
    TableStreamHeader,
    ASSEMBLY_FLAG_PUBLIC_KEY,
    STREAM_BLOB,
    STREAM_STRINGS,
    TABLE_ASSEMBLY,
    TABLE_ASSEMBLY_REF,
    TABLE_MODULE,
)

logger = logging.getLogger(__name__)

# Longest heap string read when resolving a name
MAX_STRING_LENGTH = 1024


@dataclass
class Field:
    """A decoded column value and the file offset it was read from."""

    value: int
    offset: int


@dataclass
class TableWalkResult:
    """Everything the walker extracts from the table stream."""

    module_name: str = ""
    assembly: AssemblyDefinition | None = None
    references: list[AssemblyRef] = field(default_factory=list)


class TableWalker:
    """Walk the #~ rows once and collect Module, Assembly and AssemblyRef.

    Usage:
        walker = TableWalker(cursor, root, header, widths)
        result = walker.walk()
        for ref in result.references:
            print(ref.name, ref.version_str)
    """

    def __init__(
        self,
        cursor: FileCursor,
        root: MetadataRoot,
        header: TableStreamHeader,
        widths: IndexWidths,
    ):
        self._cursor = cursor
        self._header = header
        self._widths = widths
        self._strings = root.stream(STREAM_STRINGS)
        self._blob = root.stream(STREAM_BLOB)
        self._result = TableWalkResult()
        self._handlers: dict[int, Callable[[dict[str, Field]], None]] = {
            TABLE_MODULE: self._on_module,
            TABLE_ASSEMBLY: self._on_assembly,
            TABLE_ASSEMBLY_REF: self._on_assembly_ref,
        }

    def walk(self) -> TableWalkResult:
        """Consume every present table in ascending id order."""
        self._cursor.seek(self._header.rows_offset)

        for table_id in self._header.present_tables:
            layout = get_layout(table_id)
            if layout is None:
                # All tables with a known layout precede any unknown id
                logger.debug("Stopping table walk at unknown table 0x%02x", table_id)
                break

            num_rows = self._header.row_counts[table_id]
            handler = self._handlers.get(table_id)
            if handler is None:
                row_size = layout.row_size(self._widths)
                logger.debug(
                    "Skipping %s: %d row(s) x %d bytes at 0x%x",
                    layout.name,
                    num_rows,
                    row_size,
                    self._cursor.tell(),
                )
                self._cursor.skip(num_rows * row_size)
                continue

            for _ in range(num_rows):
                handler(self.read_row(layout))

        return self._result

    def read_row(self, layout: TableLayout) -> dict[str, Field]:
        """Decode one row of a table at the cursor, recording offsets."""
        row = {}
        for column in layout.columns:
            offset = self._cursor.tell()
            value = self._cursor.read_index(column.width(self._widths))
            row[column.name] = Field(value=value, offset=offset)
        return row

    # =========================================================================
    # Heap lookups
    # =========================================================================

    def read_string(self, index: int) -> str:
        """Resolve a #Strings index without moving the table cursor."""
        if index == 0:
            return ""
        if index >= self._strings.size:
            raise FormatError(
                f"String index 0x{index:x} beyond #Strings size 0x{self._strings.size:x}"
            )
        with self._cursor.preserved(self._strings.offset + index) as cursor:
            raw = cursor.read_at_most(min(MAX_STRING_LENGTH, self._strings.size - index))
        return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")

    def blob_offset(self, index: int) -> int:
        """File offset of a #Blob entry."""
        if index and index >= self._blob.size:
            raise FormatError(
                f"Blob index 0x{index:x} beyond #Blob size 0x{self._blob.size:x}"
            )
        return self._blob.offset + index

    def read_blob_length(self, index: int) -> int:
        """Decoded length prefix of a #Blob entry."""
        with self._cursor.preserved(self.blob_offset(index)) as cursor:
            return read_compressed_uint(cursor)

    def read_public_key(self, index: int, is_full_key: bool) -> bytes:
        """Resolve a PublicKeyOrToken blob to token bytes."""
        with self._cursor.preserved(self.blob_offset(index)) as cursor:
            return read_public_key_token(cursor, is_full_key)

    # =========================================================================
    # Row handlers
    # =========================================================================

    def _on_module(self, row: dict[str, Field]) -> None:
        self._result.module_name = self.read_string(row["Name"].value)

    def _on_assembly(self, row: dict[str, Field]) -> None:
        flags = row["Flags"].value
        public_key_index = row["PublicKey"].value
        self._result.assembly = AssemblyDefinition(
            hash_alg_id=row["HashAlgId"].value,
            major_version=row["MajorVersion"].value,
            minor_version=row["MinorVersion"].value,
            build_number=row["BuildNumber"].value,
            revision_number=row["RevisionNumber"].value,
            flags=flags,
            flags_offset=row["Flags"].offset,
            public_key_index=public_key_index,
            public_key_index_offset=row["PublicKey"].offset,
            name=self.read_string(row["Name"].value),
            culture=self.read_string(row["Culture"].value),
            public_key=self.read_public_key(
                public_key_index, bool(flags & ASSEMBLY_FLAG_PUBLIC_KEY)
            ),
        )

    def _on_assembly_ref(self, row: dict[str, Field]) -> None:
        flags = row["Flags"].value
        blob_index = row["PublicKeyOrToken"].value
        reference = AssemblyRef(
            version_offset=row["MajorVersion"].offset,
            major_version=row["MajorVersion"].value,
            minor_version=row["MinorVersion"].value,
            build_number=row["BuildNumber"].value,
            revision_number=row["RevisionNumber"].value,
            flags=flags,
            flags_offset=row["Flags"].offset,
            public_key_or_token=blob_index,
            public_key_or_token_offset=row["PublicKeyOrToken"].offset,
            public_key_offset=self.blob_offset(blob_index),
            public_key_blob_length=self.read_blob_length(blob_index),
            public_key=self.read_public_key(
                blob_index, bool(flags & ASSEMBLY_FLAG_PUBLIC_KEY)
            ),
            name_index=row["Name"].value,
            name_index_offset=row["Name"].offset,
            name=self.read_string(row["Name"].value),
            culture_index=row["Culture"].value,
            culture=self.read_string(row["Culture"].value),
            hash_value_index=row["HashValue"].value,
        )
        logger.debug(
            "AssemblyRef %s %s token %s at 0x%x",
            reference.name,
            reference.version_str,
            reference.public_key_token_hex or "null",
            reference.version_offset,
        )
        self._result.references.append(reference)


def describe_tables(header: TableStreamHeader) -> list[tuple[str, int]]:
    """(name, row count) for every present table, for diagnostics."""
    return [(table_name(t), header.row_counts[t]) for t in header.present_tables]
