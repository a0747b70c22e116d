"""
Unit tests for the clrpatch.patcher module.

Every patch is checked two ways: reloading the file shows the new values,
and verify_patch confirms that no byte outside the recorded modifications
changed and the file length is the same.
"""

import builtins
import logging
import struct
from dataclasses import replace
from pathlib import Path

import pytest

from clrpatch import (
    AssemblyIOError,
    ErrorKind,
    FormatError,
    ManagedAssembly,
    NotLoaded,
    NotManagedAssembly,
    ReferenceNotFound,
    load_assembly,
    pack_version,
    parse_version,
    verify_patch,
)

from assembly_builder import (
    MSCORLIB_TOKEN,
    SILVERLIGHT_TOKEN,
    RefSpec,
    build_managed_pe,
    sha256_of,
    write_managed_pe,
)


@pytest.fixture
def open_modes(monkeypatch):
    """Record the mode of every open() made by clrpatch.assembly."""
    modes = []

    def recording_open(file, mode="r", *args, **kwargs):
        modes.append(mode)
        return builtins.open(file, mode, *args, **kwargs)

    monkeypatch.setattr("clrpatch.assembly.open", recording_open, raising=False)
    return modes


@pytest.fixture
def deny_write(monkeypatch):
    """Make every read-write open() in clrpatch.assembly fail."""

    def guarded_open(file, mode="r", *args, **kwargs):
        if "+" in mode or "w" in mode:
            raise PermissionError(13, "Permission denied", str(file))
        return builtins.open(file, mode, *args, **kwargs)

    monkeypatch.setattr("clrpatch.assembly.open", guarded_open, raising=False)


class TestVersionHelpers:
    def test_pack_version(self):
        assert pack_version(2, 0, 5, 0) == struct.pack("<HHHH", 2, 0, 5, 0)

    def test_parse_version(self):
        assert parse_version("2.0.5.0") == pack_version(2, 0, 5, 0)
        assert parse_version("65535.0.0.1") == pack_version(65535, 0, 0, 1)

    @pytest.mark.parametrize("text", ["1.2.3", "1.2.3.4.5", "a.b.c.d", "1.2.3.70000", ""])
    def test_parse_version_rejects(self, text):
        with pytest.raises(ValueError):
            parse_version(text)


class TestSetVersionForReference:
    """Tests for set_version_for_reference."""

    def test_patch_and_reload(self, managed_dll: Path):
        original = managed_dll.read_bytes()

        with load_assembly(managed_dll) as assembly:
            modifications = assembly.set_version_for_reference(
                "mscorlib", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
            )

        patched = managed_dll.read_bytes()
        result = verify_patch(original, patched, modifications)
        assert result.passed, str(result)
        assert len(patched) == len(original)
        assert [m.operation for m in modifications] == ["set_version", "set_version"]
        assert [m.size for m in modifications] == [8, 8]

        with load_assembly(managed_dll) as assembly:
            mscorlib = assembly.find_reference("mscorlib")
            assert mscorlib.version == (2, 0, 5, 0)
            assert mscorlib.public_key == SILVERLIGHT_TOKEN
            system = assembly.find_reference("System")
            assert system.version == (2, 0, 0, 0)
            assert system.public_key == MSCORLIB_TOKEN

    def test_in_memory_registry_is_not_refreshed(self, managed_dll: Path):
        with load_assembly(managed_dll) as assembly:
            assembly.set_version_for_reference(
                "System", parse_version("9.9.9.9"), SILVERLIGHT_TOKEN
            )
            assert assembly.is_loaded
            assert assembly.find_reference("System").version == (2, 0, 0, 0)

    def test_patch_twice_on_same_instance(self, managed_dll: Path):
        with load_assembly(managed_dll) as assembly:
            assembly.set_version_for_reference(
                "mscorlib", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
            )
            assembly.set_version_for_reference(
                "System.Core", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
            )

        with load_assembly(managed_dll) as assembly:
            assert assembly.find_reference("mscorlib").version == (2, 0, 5, 0)
            assert assembly.find_reference("System.Core").version == (2, 0, 5, 0)
            assert assembly.find_reference("System").version == (2, 0, 0, 0)

    def test_only_first_matching_reference_is_patched(self, tmp_path: Path):
        path = write_managed_pe(
            tmp_path / "Dup.dll",
            references=(
                RefSpec("mscorlib", (2, 0, 0, 0)),
                RefSpec("mscorlib", (4, 0, 0, 0)),
            ),
        )
        with load_assembly(path) as assembly:
            modifications = assembly.set_version_for_reference(
                "mscorlib", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
            )
        assert len(modifications) == 2

        with load_assembly(path) as assembly:
            first, second = assembly.references
            assert first.version == (2, 0, 5, 0)
            assert second.version == (4, 0, 0, 0)
            assert second.public_key == MSCORLIB_TOKEN

    def test_wide_heaps(self, tmp_path: Path):
        path = write_managed_pe(
            tmp_path / "Wide.dll", wide_strings=True, wide_blobs=True, type_refs=3
        )
        original = path.read_bytes()
        with load_assembly(path) as assembly:
            modifications = assembly.set_version_for_reference(
                "System.Core", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
            )
        assert verify_patch(original, path.read_bytes(), modifications).passed

        with load_assembly(path) as assembly:
            core = assembly.find_reference("System.Core")
            assert core.version == (2, 0, 5, 0)
            assert core.public_key == SILVERLIGHT_TOKEN

    def test_absent_name_leaves_file_unchanged(self, managed_dll: Path, caplog):
        digest = sha256_of(managed_dll)

        with caplog.at_level(logging.WARNING, logger="clrpatch.patcher"):
            with load_assembly(managed_dll) as assembly:
                modifications = assembly.set_version_for_reference(
                    "netstandard", parse_version("2.0.0.0"), SILVERLIGHT_TOKEN
                )

        assert modifications == []
        assert sha256_of(managed_dll) == digest
        assert "netstandard" in caplog.text

    def test_absent_name_never_opens_for_write(self, managed_dll: Path, open_modes):
        with load_assembly(managed_dll) as assembly:
            assembly.set_version_for_reference(
                "netstandard", parse_version("2.0.0.0"), SILVERLIGHT_TOKEN
            )
        assert "r+b" not in open_modes

    def test_absent_name_strict_raises(self, managed_dll: Path):
        digest = sha256_of(managed_dll)
        with load_assembly(managed_dll) as assembly:
            with pytest.raises(ReferenceNotFound) as exc_info:
                assembly.set_version_for_reference(
                    "netstandard",
                    parse_version("2.0.0.0"),
                    SILVERLIGHT_TOKEN,
                    strict=True,
                )
        assert exc_info.value.kind is ErrorKind.REFERENCE_NOT_FOUND
        assert exc_info.value.name == "netstandard"
        assert sha256_of(managed_dll) == digest

    @pytest.mark.parametrize(
        "version,token",
        [
            (b"\x00" * 7, SILVERLIGHT_TOKEN),
            (b"\x00" * 8, SILVERLIGHT_TOKEN[:7]),
            (b"\x00" * 8, SILVERLIGHT_TOKEN + b"\x00"),
        ],
    )
    def test_wrong_lengths_raise(self, managed_dll: Path, version, token):
        digest = sha256_of(managed_dll)
        with load_assembly(managed_dll) as assembly:
            with pytest.raises(ValueError):
                assembly.set_version_for_reference("mscorlib", version, token)
        assert sha256_of(managed_dll) == digest

    def test_requires_loaded_assembly(self):
        with pytest.raises(NotLoaded):
            ManagedAssembly().set_version_for_reference(
                "mscorlib", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
            )

    def test_write_failure_keeps_assembly_loaded(self, managed_dll: Path, deny_write):
        digest = sha256_of(managed_dll)
        with load_assembly(managed_dll) as assembly:
            with pytest.raises(AssemblyIOError) as exc_info:
                assembly.set_version_for_reference(
                    "mscorlib", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
                )
            assert exc_info.value.kind is ErrorKind.IO
            assert assembly.is_loaded
            assert assembly.find_reference("mscorlib").version == (2, 0, 0, 0)
        assert sha256_of(managed_dll) == digest

    def test_null_token_reference_is_rejected(self, tmp_path: Path, open_modes):
        path = write_managed_pe(
            tmp_path / "Plugin.dll",
            references=(RefSpec("Plugin", token=b""), RefSpec("mscorlib")),
        )
        digest = sha256_of(path)

        with load_assembly(path) as assembly:
            with pytest.raises(FormatError, match="null public key token"):
                assembly.set_version_for_reference(
                    "Plugin", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
                )

        assert "r+b" not in open_modes
        assert sha256_of(path) == digest
        with load_assembly(path) as assembly:
            plugin, mscorlib = assembly.references
            assert plugin.version == (2, 0, 0, 0)
            assert mscorlib.public_key == MSCORLIB_TOKEN

    def test_full_key_reference_is_rejected(self, full_key_reference_dll: Path):
        digest = sha256_of(full_key_reference_dll)
        with load_assembly(full_key_reference_dll) as assembly:
            with pytest.raises(FormatError, match="full public key"):
                assembly.set_version_for_reference(
                    "Vendor.Core", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
                )
        assert sha256_of(full_key_reference_dll) == digest

    def test_short_token_blob_is_rejected(self, tmp_path: Path):
        path = write_managed_pe(
            tmp_path / "Short.dll",
            references=(RefSpec("Odd", token=b"\x01\x02\x03\x04"), RefSpec("mscorlib")),
        )
        digest = sha256_of(path)
        with load_assembly(path) as assembly:
            with pytest.raises(FormatError, match="4-byte public key blob"):
                assembly.set_version_for_reference(
                    "Odd", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
                )
        assert sha256_of(path) == digest

    def test_out_of_bounds_write_leaves_file_unchanged(self, managed_dll: Path):
        digest = sha256_of(managed_dll)
        size = managed_dll.stat().st_size
        with load_assembly(managed_dll) as assembly:
            mscorlib = assembly.references[0]
            # Valid version offset, token offset past the end of the file
            assembly.references[0] = replace(mscorlib, public_key_offset=size - 4)
            with pytest.raises(ValueError, match="exceed file bounds"):
                assembly.set_version_for_reference(
                    "mscorlib", parse_version("2.0.5.0"), SILVERLIGHT_TOKEN
                )
            assert assembly.is_loaded
        assert sha256_of(managed_dll) == digest


class TestLoadFailuresNeverWrite:
    """A file that fails to load is never opened for writing."""

    def test_bad_dos_magic(self, tmp_path: Path, open_modes):
        data = bytearray(build_managed_pe())
        data[0:2] = b"XX"
        path = tmp_path / "Bad.dll"
        path.write_bytes(data)
        digest = sha256_of(path)

        with pytest.raises(FormatError):
            load_assembly(path)

        assert open_modes == ["rb"]
        assert sha256_of(path) == digest

    def test_native_image(self, native_exe: Path, open_modes):
        with pytest.raises(NotManagedAssembly):
            load_assembly(native_exe)
        assert open_modes == ["rb"]


class TestRemoveSigning:
    """Tests for remove_signing."""

    def test_unsigns_assembly(self, signed_dll: Path):
        original = signed_dll.read_bytes()

        with load_assembly(signed_dll) as assembly:
            modifications = assembly.remove_signing()
            assert not assembly.is_signed

        result = verify_patch(original, signed_dll.read_bytes(), modifications)
        assert result.passed, str(result)
        assert [m.size for m in modifications] == [72, 4, 2]

        with load_assembly(signed_dll) as assembly:
            assert not assembly.is_signed
            header = assembly.clr_header
            assert not header.is_strong_name_signed
            assert header.StrongNameSignatureRVA == 0
            assert header.StrongNameSignatureSize == 0
            assert header.is_il_only
            assert assembly.definition.public_key_index == 0
            assert assembly.public_key == b""
            assert len(assembly.references) == 3

    def test_wide_blob_index_is_cleared(self, tmp_path: Path):
        path = write_managed_pe(
            tmp_path / "WideSigned.dll",
            assembly_public_key=bytes(range(160)),
            strong_name_signed=True,
            wide_blobs=True,
        )
        with load_assembly(path) as assembly:
            modifications = assembly.remove_signing()
        assert modifications[-1].size == 4

        with load_assembly(path) as assembly:
            assert assembly.definition.public_key_index == 0
            assert not assembly.is_signed

    def test_module_without_assembly_row(self, tmp_path: Path, caplog):
        path = write_managed_pe(
            tmp_path / "Netmodule.dll", assembly_name=None, strong_name_signed=True
        )
        with caplog.at_level(logging.WARNING, logger="clrpatch.patcher"):
            with load_assembly(path) as assembly:
                modifications = assembly.remove_signing()

        assert len(modifications) == 1
        assert "no Assembly row" in caplog.text
        with load_assembly(path) as assembly:
            assert not assembly.is_signed

    def test_failed_write_keeps_file_and_state(self, signed_dll: Path):
        digest = sha256_of(signed_dll)
        size = signed_dll.stat().st_size
        with load_assembly(signed_dll) as assembly:
            header = assembly.clr_header
            definition = replace(assembly.definition, public_key_index_offset=size - 1)
            assembly.definition = definition

            with pytest.raises(ValueError, match="exceed file bounds"):
                assembly.remove_signing()

            assert assembly.is_signed
            assert assembly.clr_header is header
            assert assembly.definition is definition
        assert sha256_of(signed_dll) == digest


class TestRemoveSignedReferences:
    """Tests for remove_signed_references."""

    def test_nulls_marked_references(self, tmp_path: Path):
        vendor_path = write_managed_pe(
            tmp_path / "Vendor.Core.dll",
            module_name="Vendor.Core.dll",
            assembly_name="Vendor.Core",
            assembly_public_key=bytes(range(160)),
            strong_name_signed=True,
            references=(RefSpec("mscorlib"),),
        )
        app_path = write_managed_pe(
            tmp_path / "App.dll",
            references=(
                RefSpec("mscorlib"),
                RefSpec("Vendor.Core", (1, 0, 0, 0), SILVERLIGHT_TOKEN),
            ),
        )
        original = app_path.read_bytes()

        vendor = load_assembly(vendor_path)
        try:
            with load_assembly(app_path) as app:
                modifications = app.remove_signed_references(
                    {"Vendor.Core": vendor}, [vendor]
                )
        finally:
            vendor.close()

        assert verify_patch(original, app_path.read_bytes(), modifications).passed
        with load_assembly(app_path) as app:
            assert app.find_reference("Vendor.Core").public_key == b""
            assert app.find_reference("Vendor.Core").public_key_or_token == 0
            assert app.find_reference("mscorlib").public_key == MSCORLIB_TOKEN

    def test_unmarked_assemblies_are_left_alone(self, managed_dll: Path, signed_dll: Path):
        digest = sha256_of(managed_dll)
        signed = load_assembly(signed_dll)
        try:
            with load_assembly(managed_dll) as assembly:
                modifications = assembly.remove_signed_references(
                    {"mscorlib": signed}, []
                )
        finally:
            signed.close()

        assert modifications == []
        assert sha256_of(managed_dll) == digest
