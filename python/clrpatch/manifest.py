"""
Reference manifest: a MessagePack snapshot of an assembly's references.

A build step can write the manifest before patching and compare it with one
written afterwards, or keep it next to the output as a record of what the
assembly was linked against.

Format (a map):
    assembly:   module name
    location:   absolute path the assembly was loaded from
    signed:     whether the assembly is strong-name signed
    references: list of maps with name, culture, version ([4 ints]),
                flags and public_key_token (bytes)
"""

import logging
from pathlib import Path

import msgpack

from .assembly import ManagedAssembly
from .errors import FormatError

logger = logging.getLogger(__name__)

MANIFEST_KEYS = ("assembly", "location", "signed", "references")


def build_reference_manifest(assembly: ManagedAssembly) -> dict:
    """Build the manifest structure for a loaded assembly."""
    return {
        "assembly": assembly.name,
        "location": str(assembly.location),
        "signed": assembly.is_signed,
        "references": [
            {
                "name": ref.name,
                "culture": ref.culture,
                "version": list(ref.version),
                "flags": ref.flags,
                "public_key_token": ref.public_key,
            }
            for ref in assembly.get_referenced_assemblies()
        ],
    }


def pack_reference_manifest(assembly: ManagedAssembly) -> bytes:
    """Serialize the manifest to MessagePack bytes."""
    return msgpack.packb(build_reference_manifest(assembly), use_bin_type=True)


def unpack_reference_manifest(content: bytes) -> dict:
    """Parse manifest bytes.

    Raises:
        FormatError: Content is not a valid manifest
    """
    try:
        manifest = msgpack.unpackb(content, raw=False, strict_map_key=True)
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        raise FormatError(f"Failed to parse reference manifest: {e}") from e

    if not isinstance(manifest, dict):
        raise FormatError(
            f"Invalid reference manifest: expected map, got {type(manifest).__name__}"
        )
    missing = [key for key in MANIFEST_KEYS if key not in manifest]
    if missing:
        raise FormatError(f"Reference manifest missing key(s): {', '.join(missing)}")
    if not isinstance(manifest["references"], list):
        raise FormatError("Reference manifest 'references' must be a list")
    return manifest


def write_reference_manifest(assembly: ManagedAssembly, path: Path) -> None:
    """Write the manifest of a loaded assembly to path."""
    content = pack_reference_manifest(assembly)
    path.write_bytes(content)
    logger.info(
        "Wrote manifest for %s (%d reference(s)) to %s",
        assembly.name,
        len(assembly.references),
        path,
    )


def read_reference_manifest(path: Path) -> dict:
    """Read a manifest written by write_reference_manifest."""
    return unpack_reference_manifest(path.read_bytes())
