"""Argument parsing helpers for the docstore CLI."""

from __future__ import annotations

import argparse
from typing import Dict, Optional, Sequence


def parse_mapping(value: str) -> tuple[str, str]:
    """Parse an ``OLD=NEW`` re-keying pair."""

    old_id, sep, new_id = value.partition("=")
    if not sep or not old_id.strip() or not new_id.strip():
        raise argparse.ArgumentTypeError(f"Expected OLD=NEW, got {value!r}")
    return old_id.strip(), new_id.strip()


def mappings_from_args(pairs: Optional[Sequence[tuple[str, str]]]) -> Dict[str, str]:
    return {old_id: new_id for old_id, new_id in pairs or []}


def _add_shared_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument(
        "--root",
        dest="docstore_dir",
        help="Docstore root directory (defaults to DOCSTORE_DIR or ./docstore).",
    )
    parser.add_argument(
        "--auth",
        dest="auth_enabled",
        action="store_true",
        default=None,
        help="Treat the store as auth-enabled (per-owner audiobook directories).",
    )
    parser.add_argument(
        "--namespace",
        help="Test namespace partitioning the unclaimed owner and key prefixes.",
    )
    parser.add_argument(
        "--no-probe",
        dest="probe_durations",
        action="store_false",
        help="Skip ffprobe duration probing while indexing.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging output.")
    return parser


def build_cli_parser() -> argparse.ArgumentParser:
    """Build the CLI parser with one sub-command per maintenance task."""

    parser = argparse.ArgumentParser(
        prog="docstore", description="docstore storage maintenance", allow_abbrev=False
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_v1 = subparsers.add_parser(
        "migrate-v1", help="Migrate legacy document and audiobook layouts", allow_abbrev=False
    )
    _add_shared_arguments(migrate_v1)
    migrate_v1.add_argument(
        "--map",
        dest="mappings",
        action="append",
        type=parse_mapping,
        metavar="OLD=NEW",
        help="Re-key the audiobook directory of OLD to NEW (repeatable).",
    )
    migrate_v1.set_defaults(command="migrate-v1")

    migrate_v2 = subparsers.add_parser(
        "migrate-v2", help="Copy local documents into object storage", allow_abbrev=False
    )
    _add_shared_arguments(migrate_v2)
    migrate_v2.add_argument("--dry-run", action="store_true", help="Report without writing.")
    migrate_v2.add_argument(
        "--delete-local",
        action="store_true",
        help="Delete each local document once the upload is acknowledged.",
    )
    migrate_v2.add_argument(
        "--include-audiobooks",
        action="store_true",
        help="Also upload the local audiobook tree.",
    )
    migrate_v2.set_defaults(command="migrate-v2")

    scan = subparsers.add_parser(
        "scan", help="Index on-disk content as unclaimed rows", allow_abbrev=False
    )
    _add_shared_arguments(scan)
    scan.set_defaults(command="scan")

    claim = subparsers.add_parser(
        "claim", help="Transfer artifacts to another owner", allow_abbrev=False
    )
    _add_shared_arguments(claim)
    claim.add_argument("--to", dest="to_owner", required=True, help="Destination owner id.")
    claim.add_argument(
        "--from",
        dest="from_owner",
        help="Source owner id (defaults to the unclaimed owner).",
    )
    claim.set_defaults(command="claim")

    prune = subparsers.add_parser(
        "prune", help="Drop rows of a book whose stored files are gone", allow_abbrev=False
    )
    _add_shared_arguments(prune)
    prune.add_argument("--book", dest="book_id", required=True, help="Audiobook id.")
    prune.add_argument(
        "--owner",
        dest="owner_id",
        help="Owner id of the rows (defaults to the unclaimed owner).",
    )
    prune.set_defaults(command="prune")

    status = subparsers.add_parser(
        "status", help="Show layout migration status", allow_abbrev=False
    )
    _add_shared_arguments(status)
    status.set_defaults(command="status")

    return parser


__all__ = ["build_cli_parser", "mappings_from_args", "parse_mapping"]
