"""Gust CLI — gust inspect / gust events.

Entry point for the ``gust`` command-line interface. Works on captured
push-event streams (for example a response body saved from the browser's
network tab).
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gust.patches import PatchOperation


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the gust CLI."""
    parser = argparse.ArgumentParser(
        prog="gust",
        description="Server-driven UI patches over Server-Sent Events.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # gust inspect
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Decode a captured event stream, one line per operation",
    )
    inspect_parser.add_argument("file", help="Captured stream ('-' for stdin)")
    inspect_parser.add_argument(
        "--state",
        action="store_true",
        help="Print the client state after applying every state patch",
    )

    # gust events
    subparsers.add_parser("events", help="Print the patch kind to event name table")

    return parser


def _get_version() -> str:
    """Get the package version."""
    from gust import __version__

    return __version__


def describe(op: PatchOperation) -> str:
    """One-line summary of an operation."""
    from gust.encoder import EVENT_NAMES, to_json

    parts = [f"{EVENT_NAMES[op.kind]:<17}", op.kind.value]
    parts.extend(f"{name}={value}" for name, value in op.options.items() if name != "attributes")
    if isinstance(op.payload, str):
        first = op.payload.split("\n", 1)[0]
        suffix = "..." if len(first) > 60 or "\n" in op.payload else ""
        parts.append(f"{first[:60]!r}{suffix}")
    else:
        parts.append(to_json(op.payload))
    return " ".join(parts)


def _read(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _inspect(path: str, *, show_state: bool) -> int:
    from gust._errors import GustError
    from gust.encoder import decode_stream
    from gust.merge import apply_patches

    try:
        operations = decode_stream(_read(path))
    except OSError as exc:
        print(f"  gust: cannot read {path}: {exc}", file=sys.stderr)
        return 1
    except GustError as exc:
        print(f"  gust: {path}: {exc}", file=sys.stderr)
        return 1

    for index, op in enumerate(operations, start=1):
        print(f"{index:>4}  {describe(op)}")
    if show_state:
        print(json.dumps(apply_patches(operations), indent=2, sort_keys=True))
    return 0


def _events() -> int:
    from gust.encoder import EVENT_NAMES

    for kind, event in EVENT_NAMES.items():
        print(f"{kind.value:<18} {event}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "inspect":
        sys.exit(_inspect(args.file, show_state=args.state))
    elif args.command == "events":
        sys.exit(_events())


if __name__ == "__main__":
    main()
