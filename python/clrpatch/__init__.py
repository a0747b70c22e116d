"""
clrpatch: in-place AssemblyRef patching for managed PE modules.

Reads the PE container and the ECMA-335 metadata of a managed module far
enough to locate every AssemblyRef row, then patches fixed-width fields
(version, public key token, signing flags) without changing the file length:

    from clrpatch import load_assembly, parse_version

    with load_assembly("Game.dll") as assembly:
        for ref in assembly.get_referenced_assemblies():
            print(ref.name, ref.version_str, ref.public_key_token_hex)
        assembly.set_version_for_reference(
            "mscorlib", parse_version("2.0.5.0"), bytes.fromhex("7cec85d7bea7798e")
        )

A fresh load is needed to observe patched values; the in-memory registry
keeps what was read at load time.
"""

from .assembly import ManagedAssembly, load_assembly
from .errors import (
    ErrorKind,
    ClrPatchError,
    FormatError,
    NotManagedAssembly,
    MissingMetadataStream,
    InvalidOffset,
    AssemblyIOError,
    ReferenceNotFound,
    NotLoaded,
)
from .format_detect import (
    detect_binary_format,
    is_pe_binary,
    is_managed_assembly,
    UnsupportedBinaryFormat,
)
from .manifest import (
    build_reference_manifest,
    read_reference_manifest,
    write_reference_manifest,
)
from .metadata.types import AssemblyDefinition, AssemblyRef
from .patcher import (
    Modification,
    pack_version,
    parse_version,
    set_version_for_reference,
    remove_signing,
    remove_signed_references,
)
from .verify import AssemblyVerifier, VerificationResult, verify_patch

__all__ = [
    # Loading
    "ManagedAssembly",
    "load_assembly",
    "AssemblyDefinition",
    "AssemblyRef",
    # Errors
    "ErrorKind",
    "ClrPatchError",
    "FormatError",
    "NotManagedAssembly",
    "MissingMetadataStream",
    "InvalidOffset",
    "AssemblyIOError",
    "ReferenceNotFound",
    "NotLoaded",
    # Format detection
    "detect_binary_format",
    "is_pe_binary",
    "is_managed_assembly",
    "UnsupportedBinaryFormat",
    # Patching
    "Modification",
    "pack_version",
    "parse_version",
    "set_version_for_reference",
    "remove_signing",
    "remove_signed_references",
    # Manifest
    "build_reference_manifest",
    "read_reference_manifest",
    "write_reference_manifest",
    # Verification
    "AssemblyVerifier",
    "VerificationResult",
    "verify_patch",
]
