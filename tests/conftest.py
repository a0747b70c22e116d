import pathlib

import pytest

from assembly_builder import (
    RefSpec,
    build_native_pe,
    write_managed_pe,
)


@pytest.fixture
def managed_dll(tmp_path: pathlib.Path) -> pathlib.Path:
    """Unsigned module referencing mscorlib, System and System.Core."""
    return write_managed_pe(tmp_path / "Game.dll")


@pytest.fixture
def signed_dll(tmp_path: pathlib.Path) -> pathlib.Path:
    """Strong-name signed module with a full public key on its Assembly row."""
    return write_managed_pe(
        tmp_path / "Signed.dll",
        module_name="Signed.dll",
        assembly_name="Signed",
        assembly_public_key=bytes(range(160)),
        strong_name_signed=True,
    )


@pytest.fixture
def full_key_reference_dll(tmp_path: pathlib.Path) -> pathlib.Path:
    """Module whose second reference carries a full public key."""
    return write_managed_pe(
        tmp_path / "FullKey.dll",
        references=(
            RefSpec("mscorlib"),
            RefSpec("Vendor.Core", (1, 2, 3, 4), full_key=bytes(range(160))),
        ),
    )


@pytest.fixture
def native_exe(tmp_path: pathlib.Path) -> pathlib.Path:
    """Plain PE32 image without a CLR header."""
    path = tmp_path / "native.exe"
    path.write_bytes(build_native_pe())
    return path
