"""Tests for managed/native PE detection.

Uses images from assembly_builder plus minimal synthetic headers for the
error cases.
"""

import struct
from pathlib import Path

import pytest

from clrpatch.format_detect import (
    detect_binary_format,
    is_managed_assembly,
    is_pe_binary,
    UnsupportedBinaryFormat,
    FORMAT_MANAGED,
    FORMAT_NATIVE,
)


class TestDetectBinaryFormat:
    """Tests for detect_binary_format function."""

    def test_detect_managed(self, managed_dll: Path):
        assert detect_binary_format(managed_dll) == FORMAT_MANAGED

    def test_detect_native(self, native_exe: Path):
        assert detect_binary_format(native_exe) == FORMAT_NATIVE

    def test_headers_without_optional_header_are_native(self, tmp_path: Path):
        pe_file = tmp_path / "stub.exe"
        data = bytearray(256)
        data[0:2] = b"MZ"
        struct.pack_into("<I", data, 0x3C, 0x80)
        data[0x80:0x84] = b"PE\x00\x00"
        pe_file.write_bytes(data)

        assert detect_binary_format(pe_file) == FORMAT_NATIVE

    def test_empty_file_raises(self, tmp_path: Path):
        empty = tmp_path / "empty.dll"
        empty.write_bytes(b"")
        with pytest.raises(UnsupportedBinaryFormat):
            detect_binary_format(empty)

    def test_text_file_raises(self, tmp_path: Path):
        text = tmp_path / "readme.txt"
        text.write_text("hello world" * 10)
        with pytest.raises(UnsupportedBinaryFormat, match="Not a DOS/PE"):
            detect_binary_format(text)

    def test_invalid_pe_offset_raises(self, tmp_path: Path):
        bad = tmp_path / "bad.dll"
        data = bytearray(256)
        data[0:2] = b"MZ"
        struct.pack_into("<I", data, 0x3C, 0x10)
        bad.write_bytes(data)
        with pytest.raises(UnsupportedBinaryFormat, match="Invalid PE header offset"):
            detect_binary_format(bad)

    def test_missing_pe_signature_raises(self, tmp_path: Path):
        bad = tmp_path / "bad.dll"
        data = bytearray(256)
        data[0:2] = b"MZ"
        struct.pack_into("<I", data, 0x3C, 0x80)
        bad.write_bytes(data)
        with pytest.raises(UnsupportedBinaryFormat, match="Missing PE signature"):
            detect_binary_format(bad)

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            detect_binary_format(tmp_path / "absent.dll")


class TestPredicates:
    def test_is_pe_binary(self, managed_dll: Path, native_exe: Path, tmp_path: Path):
        assert is_pe_binary(managed_dll)
        assert is_pe_binary(native_exe)
        assert not is_pe_binary(tmp_path / "absent.dll")

    def test_is_managed_assembly(self, managed_dll: Path, native_exe: Path, tmp_path: Path):
        text = tmp_path / "notes.txt"
        text.write_text("x" * 100)
        assert is_managed_assembly(managed_dll)
        assert not is_managed_assembly(native_exe)
        assert not is_managed_assembly(text)
