#!/usr/bin/env python3
"""
Assembly reference patching CLI tool.

Lists, patches and verifies the AssemblyRef records of a managed module.

Usage:
    python -m clrpatch.tools.patch_reference list <assembly>
    python -m clrpatch.tools.patch_reference set-version <assembly> <name> <a.b.c.d> <token-hex>
    python -m clrpatch.tools.patch_reference remove-signing <assembly>
    python -m clrpatch.tools.patch_reference manifest <assembly> -o refs.msgpack
    python -m clrpatch.tools.patch_reference verify <assembly>
"""

import argparse
import logging
import sys
from pathlib import Path

from clrpatch import (
    ClrPatchError,
    ManagedAssembly,
    AssemblyVerifier,
    parse_version,
    verify_patch,
    write_reference_manifest,
)
from clrpatch.metadata import describe_tables


def cmd_list(args: argparse.Namespace) -> int:
    with ManagedAssembly.open(args.assembly) as assembly:
        definition = assembly.definition
        print(f"Module: {assembly.name}")
        if definition is not None:
            version = ".".join(str(v) for v in definition.version)
            print(f"Assembly: {definition.name} {version}")
        print(f"Signed: {'yes' if assembly.is_signed else 'no'}")
        if args.tables:
            print("Tables:")
            for name, rows in describe_tables(assembly.table_header):
                print(f"  {name}: {rows}")
        print(f"References ({len(assembly.references)}):")
        for ref in assembly.get_referenced_assemblies():
            culture = ref.culture or "neutral"
            token = ref.public_key_token_hex or "null"
            print(f"  {ref.name}, Version={ref.version_str}, "
                  f"Culture={culture}, PublicKeyToken={token}")
    return 0


def cmd_set_version(args: argparse.Namespace) -> int:
    version = parse_version(args.version)
    try:
        token = bytes.fromhex(args.token)
    except ValueError as e:
        raise ValueError(f"Invalid public key token {args.token!r}: {e}") from e

    original = args.assembly.read_bytes()
    with ManagedAssembly.open(args.assembly) as assembly:
        modifications = assembly.set_version_for_reference(
            args.name, version, token, strict=args.strict
        )

    if not modifications:
        print(f"No reference named {args.name!r}; file unchanged")
        return 0

    result = verify_patch(original, args.assembly.read_bytes(), modifications)
    for m in modifications:
        print(f"  {m.description} ({m.size} bytes)")
    print(result)
    return 0 if result.passed else 1


def cmd_remove_signing(args: argparse.Namespace) -> int:
    original = args.assembly.read_bytes()
    with ManagedAssembly.open(args.assembly) as assembly:
        if not assembly.is_signed:
            print(f"{args.assembly} is not signed")
            return 0
        modifications = assembly.remove_signing()

    result = verify_patch(original, args.assembly.read_bytes(), modifications)
    print(result)
    return 0 if result.passed else 1


def cmd_manifest(args: argparse.Namespace) -> int:
    output = args.output or args.assembly.with_suffix(".refs.msgpack")
    with ManagedAssembly.open(args.assembly) as assembly:
        write_reference_manifest(assembly, output)
    print(f"Wrote {output}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    result = AssemblyVerifier.verify(args.assembly)
    print(result)
    return 0 if result.passed else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect and patch assembly references of a managed module in place"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List assembly references")
    p.add_argument("assembly", type=Path, help="Path to managed module")
    p.add_argument("--tables", action="store_true", help="Also list metadata tables")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("set-version", help="Set version and token of a reference")
    p.add_argument("assembly", type=Path, help="Path to managed module")
    p.add_argument("name", help="Reference name, e.g. mscorlib")
    p.add_argument("version", help="New version, e.g. 2.0.5.0")
    p.add_argument("token", help="New public key token as 16 hex digits")
    p.add_argument(
        "--strict",
        action="store_true",
        help="Fail if no reference has the given name",
    )
    p.set_defaults(func=cmd_set_version)

    p = sub.add_parser("remove-signing", help="Clear strong-name signing markers")
    p.add_argument("assembly", type=Path, help="Path to managed module")
    p.set_defaults(func=cmd_remove_signing)

    p = sub.add_parser("manifest", help="Write a MessagePack reference manifest")
    p.add_argument("assembly", type=Path, help="Path to managed module")
    p.add_argument("-o", "--output", type=Path, help="Output path")
    p.set_defaults(func=cmd_manifest)

    p = sub.add_parser("verify", help="Run structural checks")
    p.add_argument("assembly", type=Path, help="Path to managed module")
    p.set_defaults(func=cmd_verify)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.assembly.exists():
        print(f"Error: {args.assembly} does not exist", file=sys.stderr)
        return 1

    try:
        return args.func(args)
    except (ClrPatchError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
