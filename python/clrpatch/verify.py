"""
Verification utilities for loaded and patched assemblies.

Two kinds of checks:
- AssemblyVerifier: structural checks on a loaded assembly (sections, streams
  and recorded registry offsets lie inside the file)
- verify_patch: compare a file before and after patching and fail on any
  length change or any changed byte outside the recorded modifications
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .assembly import ManagedAssembly
from .patcher import Modification


@dataclass
class VerificationResult:
    """Findings of one assembly check or patch comparison.

    An error marks the assembly or patch as broken; a warning is reported
    but leaves passed set.
    """

    passed: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)
        self.passed = False

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def merge(self, other: "VerificationResult") -> None:
        """Fold the findings of another check into this result."""
        self.passed = self.passed and other.passed
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def __str__(self) -> str:
        lines = ["Verification PASSED" if self.passed else "Verification FAILED"]
        for title, messages in (("Errors", self.errors), ("Warnings", self.warnings)):
            if messages:
                lines.append(f"{title} ({len(messages)}):")
                lines.extend(f"  - {message}" for message in messages)
        return "\n".join(lines)


class AssemblyVerifier:
    """Structural checks on a loaded managed assembly.

    Usage:
        result = AssemblyVerifier.verify(Path("Game.dll"))
        if not result.passed:
            print(result)
    """

    def __init__(self, assembly: ManagedAssembly, file_size: int):
        self._assembly = assembly
        self._file_size = file_size

    @classmethod
    def verify(cls, path: Path) -> VerificationResult:
        """Load an assembly from disk and run all checks."""
        with ManagedAssembly.open(path) as assembly:
            verifier = cls(assembly, path.stat().st_size)
            return verifier.run_all_checks()

    def run_all_checks(self) -> VerificationResult:
        result = VerificationResult()

        checks: list[Callable[[], VerificationResult]] = [
            self.check_sections_in_bounds,
            self.check_streams_in_bounds,
            self.check_reference_offsets,
            self.check_signing_consistency,
        ]

        for check in checks:
            result.merge(check())

        return result

    def check_sections_in_bounds(self) -> VerificationResult:
        """Check that section raw data is within file bounds."""
        result = VerificationResult()
        for section in self._assembly.image.sections:
            if section.SizeOfRawData == 0:
                continue
            if section.end_file_offset > self._file_size:
                result.add_error(
                    f"Section {section.name_str} raw data extends beyond file: "
                    f"ends at 0x{section.end_file_offset:x}, "
                    f"file size is 0x{self._file_size:x}"
                )
        return result

    def check_streams_in_bounds(self) -> VerificationResult:
        """Check that every metadata stream lies inside the file."""
        result = VerificationResult()
        for stream in self._assembly.metadata.streams:
            if stream.end_offset > self._file_size:
                result.add_error(
                    f"Stream {stream.name} extends beyond file: "
                    f"[0x{stream.offset:x}, 0x{stream.end_offset:x})"
                )
        return result

    def check_reference_offsets(self) -> VerificationResult:
        """Check that the patchable fields of every reference are in bounds."""
        result = VerificationResult()
        for reference in self._assembly.references:
            fields = [
                ("version", reference.version_offset, 8),
                ("flags", reference.flags_offset, 4),
                ("public key index", reference.public_key_or_token_offset, 2),
                ("public key blob", reference.public_key_offset, 1),
            ]
            for label, offset, size in fields:
                if offset + size > self._file_size:
                    result.add_error(
                        f"Reference {reference.name} {label} at 0x{offset:x} "
                        f"is beyond end of file"
                    )
            if reference.public_key and len(reference.public_key) != 8:
                result.add_warning(
                    f"Reference {reference.name} has a "
                    f"{len(reference.public_key)}-byte public key token"
                )
        return result

    def check_signing_consistency(self) -> VerificationResult:
        """Warn when the CLR flag and the Assembly flag disagree."""
        result = VerificationResult()
        clr_signed = self._assembly.clr_header.is_strong_name_signed
        definition = self._assembly.definition
        assembly_signed = definition is not None and definition.has_public_key
        if clr_signed and not assembly_signed:
            result.add_warning(
                "CLR header is strong-name signed but the Assembly row has no public key"
            )
        return result


def verify_patch(
    original: bytes,
    patched: bytes,
    modifications: Iterable[Modification],
) -> VerificationResult:
    """Check that a patch touched only the recorded byte ranges.

    Args:
        original: File contents before patching
        patched: File contents after patching
        modifications: Records returned by the patch operation(s)

    Returns:
        VerificationResult; fails on a length change or any changed byte
        outside every modification range
    """
    result = VerificationResult()

    if len(original) != len(patched):
        result.add_error(
            f"File length changed: {len(original)} -> {len(patched)} bytes"
        )
        return result

    allowed = sorted((m.file_offset, m.end_offset) for m in modifications)

    def is_allowed(offset: int) -> bool:
        return any(start <= offset < end for start, end in allowed)

    changed = [
        i for i, (a, b) in enumerate(zip(original, patched)) if a != b
    ]
    unexpected = [offset for offset in changed if not is_allowed(offset)]
    if unexpected:
        preview = ", ".join(f"0x{o:x}" for o in unexpected[:8])
        more = f" (+{len(unexpected) - 8} more)" if len(unexpected) > 8 else ""
        result.add_error(
            f"{len(unexpected)} byte(s) changed outside patched ranges: {preview}{more}"
        )

    if not changed:
        result.add_warning("Patch did not change any bytes")

    return result
