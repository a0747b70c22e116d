"""
Error kinds raised while reading or patching a managed assembly.

Every failure carries an ErrorKind so callers can branch on the category
without string matching:

    try:
        assembly = load_assembly(path)
    except ClrPatchError as e:
        if e.kind is ErrorKind.NOT_MANAGED:
            ...  # plain native PE, nothing to patch
"""

from enum import Enum


class ErrorKind(Enum):
    """Category of a ClrPatchError."""

    FORMAT = "format"
    NOT_MANAGED = "not_managed"
    MISSING_STREAM = "missing_stream"
    INVALID_OFFSET = "invalid_offset"
    IO = "io"
    REFERENCE_NOT_FOUND = "reference_not_found"
    NOT_LOADED = "not_loaded"


class ClrPatchError(Exception):
    """Base class for all clrpatch errors."""

    kind: ErrorKind = ErrorKind.FORMAT


class FormatError(ClrPatchError, ValueError):
    """Raised for a bad DOS magic, truncated structure or oversize CLR header."""

    kind = ErrorKind.FORMAT


class NotManagedAssembly(ClrPatchError, ValueError):
    """Raised when a PE has no CLR header or a bad metadata signature."""

    kind = ErrorKind.NOT_MANAGED


class MissingMetadataStream(ClrPatchError, ValueError):
    """Raised when one of #Strings, #~, #US, #GUID or #Blob is absent."""

    kind = ErrorKind.MISSING_STREAM

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing metadata stream(s): {', '.join(missing)}")


class InvalidOffset(ClrPatchError, ValueError):
    """Raised when an RVA is not covered by any section."""

    kind = ErrorKind.INVALID_OFFSET

    def __init__(self, rva: int):
        self.rva = rva
        super().__init__(f"RVA 0x{rva:x} not in any section")


class AssemblyIOError(ClrPatchError, OSError):
    """Raised when the assembly file cannot be opened, read or written."""

    kind = ErrorKind.IO


class ReferenceNotFound(ClrPatchError, LookupError):
    """Raised by strict patch operations when no AssemblyRef has the name."""

    kind = ErrorKind.REFERENCE_NOT_FOUND

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No assembly reference named {name!r}")


class NotLoaded(ClrPatchError, RuntimeError):
    """Raised when an operation needs a loaded assembly."""

    kind = ErrorKind.NOT_LOADED
