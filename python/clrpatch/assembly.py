"""
Managed assembly loading and the AssemblyRef registry.

ManagedAssembly ties the readers together: one load() call reads the PE
container, the CLR header, the metadata root, the #~ header and widths, and
walks the tables, in that order. Either all of it succeeds and the instance
becomes loaded, or the file handle is closed and the error propagates with
the instance left unloaded.

Patch operations live in clrpatch.patcher; the methods here are thin
wrappers so a loaded assembly can be patched directly:

    with ManagedAssembly.open(Path("Game.dll")) as assembly:
        for ref in assembly.get_referenced_assemblies():
            print(ref.name, ref.version_str, ref.public_key_token_hex)
        assembly.set_version_for_reference("mscorlib", version, token)
"""

import logging
import os
from collections.abc import Collection, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator

from . import patcher
from .cursor import FileCursor
from .errors import AssemblyIOError, NotLoaded
from .metadata.index_widths import (
    IndexWidths,
    read_table_stream_header,
    resolve_index_widths,
)
from .metadata.root import read_metadata_root
from .metadata.tables import TableWalker
from .metadata.types import (
    AssemblyDefinition,
    AssemblyRef,
    MetadataRoot,
    TableStreamHeader,
    STREAM_TABLES,
)
from .pe.reader import PeImage
from .pe.types import CLRHeader

logger = logging.getLogger(__name__)


class ManagedAssembly:
    """A managed PE module opened read-only, with its AssemblyRef registry."""

    def __init__(self):
        self._file: BinaryIO | None = None
        self._path: Path | None = None
        self._loaded = False
        self._reset()

    def _reset(self) -> None:
        self.image: PeImage | None = None
        self.metadata: MetadataRoot | None = None
        self.table_header: TableStreamHeader | None = None
        self.widths: IndexWidths | None = None
        self.name = ""  # Module name
        self.definition: AssemblyDefinition | None = None
        self.references: list[AssemblyRef] = []

    @classmethod
    def open(cls, path: Path | str) -> "ManagedAssembly":
        """Create an instance and load path into it."""
        assembly = cls()
        assembly.load(path)
        return assembly

    def __enter__(self) -> "ManagedAssembly":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __del__(self):
        if self._file is not None:
            self._file.close()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self, path: Path | str) -> None:
        """Parse a managed module.

        Raises:
            AssemblyIOError: The file could not be opened or read
            FormatError, NotManagedAssembly, MissingMetadataStream,
            InvalidOffset: The file is not a well-formed managed module
        """
        self.close()
        path = Path(path)

        try:
            handle = open(path, "rb")
        except OSError as e:
            raise AssemblyIOError(f"Cannot open {path}: {e}") from e

        try:
            self._parse(FileCursor(handle))
        except Exception:
            handle.close()
            self._path = None
            self._reset()
            raise

        self._file = handle
        self._path = path.resolve()
        self._loaded = True
        logger.debug(
            "Loaded %s (module %r, %d reference(s))",
            self._path,
            self.name,
            len(self.references),
        )

    def _parse(self, cursor: FileCursor) -> None:
        image = PeImage.read(cursor)
        metadata = read_metadata_root(cursor, image)
        table_header = read_table_stream_header(
            cursor, metadata.stream(STREAM_TABLES).offset
        )
        widths = resolve_index_widths(table_header.heap_sizes, table_header.row_counts)
        result = TableWalker(cursor, metadata, table_header, widths).walk()

        self.image = image
        self.metadata = metadata
        self.table_header = table_header
        self.widths = widths
        self.name = result.module_name
        self.definition = result.assembly
        self.references = result.references

    def close(self) -> None:
        """Release the file handle and mark the instance unloaded."""
        if self._file is not None:
            self._file.close()
            self._file = None
        self._loaded = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def location(self) -> Path | None:
        """Absolute path of the loaded file."""
        return self._path

    @property
    def is_writable(self) -> bool:
        """Check if the loaded file can be opened for writing."""
        return self._path is not None and os.access(self._path, os.W_OK)

    @property
    def clr_header(self) -> CLRHeader:
        self._require_loaded()
        return self.image.clr_header

    @property
    def is_signed(self) -> bool:
        """Check the CLR strong-name flag or the Assembly PublicKey flag."""
        if not self._loaded:
            return False
        if self.image.clr_header.is_strong_name_signed:
            return True
        return self.definition is not None and self.definition.has_public_key

    @property
    def public_key(self) -> bytes:
        """Token of the assembly's own public key (empty if unsigned)."""
        self._require_loaded()
        return self.definition.public_key if self.definition else b""

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise NotLoaded("No assembly is loaded.")

    # =========================================================================
    # Registry queries
    # =========================================================================

    def get_referenced_assemblies(self) -> list[AssemblyRef]:
        """All AssemblyRef rows in table order."""
        self._require_loaded()
        return self.references

    def find_reference(self, name: str) -> AssemblyRef | None:
        """First AssemblyRef whose resolved name equals name."""
        self._require_loaded()
        for reference in self.references:
            if reference.name == name:
                return reference
        return None

    def rva_to_file_offset(self, rva: int) -> int:
        self._require_loaded()
        return self.image.rva_to_file_offset(rva)

    # =========================================================================
    # Write access
    # =========================================================================

    @contextmanager
    def reopened_for_write(self) -> Iterator[BinaryIO]:
        """Swap the read-only handle for a read-write one for the block.

        The read-only handle is restored afterwards whether or not the block
        succeeds. If the file cannot be opened for writing, the instance stays
        loaded read-only and AssemblyIOError is raised so the caller can retry.
        """
        self._require_loaded()
        self._file.close()
        self._file = None

        try:
            handle = open(self._path, "r+b")
        except OSError as e:
            logger.warning("Failed to open '%s' for writing: %s", self._path, e)
            self._reopen_read_only()
            raise AssemblyIOError(f"Cannot open {self._path} for writing: {e}") from e

        try:
            yield handle
        finally:
            handle.close()
            self._reopen_read_only()

    def _reopen_read_only(self) -> None:
        try:
            self._file = open(self._path, "rb")
        except OSError as e:
            self._loaded = False
            raise AssemblyIOError(f"Cannot reopen {self._path}: {e}") from e

    # =========================================================================
    # Patch operations
    # =========================================================================

    def set_version_for_reference(
        self,
        name: str,
        version: bytes,
        public_key: bytes,
        strict: bool = False,
    ) -> list[patcher.Modification]:
        """See clrpatch.patcher.set_version_for_reference."""
        return patcher.set_version_for_reference(self, name, version, public_key, strict)

    def remove_signing(self) -> list[patcher.Modification]:
        """See clrpatch.patcher.remove_signing."""
        return patcher.remove_signing(self)

    def remove_signed_references(
        self,
        name_to_assembly: Mapping[str, "ManagedAssembly"],
        marked_for_stripping: Collection["ManagedAssembly"],
    ) -> list[patcher.Modification]:
        """See clrpatch.patcher.remove_signed_references."""
        return patcher.remove_signed_references(self, name_to_assembly, marked_for_stripping)


def load_assembly(path: Path | str) -> ManagedAssembly:
    """Load a managed module (convenience wrapper for ManagedAssembly.open)."""
    return ManagedAssembly.open(path)
