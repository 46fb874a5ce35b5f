"""Implementations of the docstore CLI sub-commands."""

from __future__ import annotations

import argparse
from typing import Any, Dict

from .. import logging_manager as log_mgr
from ..context import DocstoreContext
from ..migrations import MigrationError
from ..services import ClaimError
from ..storage import InvalidKeyError, ObjectStorageNotConfiguredError
from ..storage.layout import unclaimed_user_id
from .args import mappings_from_args

logger = log_mgr.get_logger().getChild("cli")


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "docstore_dir", None):
        overrides["docstore_dir"] = args.docstore_dir
    if getattr(args, "auth_enabled", None):
        overrides["auth_enabled"] = True
    return overrides


def _print_model(model) -> None:
    for key, value in model.model_dump(by_alias=True).items():
        log_mgr.console_info("%s: %s", key, value, logger_obj=logger)


def run_migrate_v1(context: DocstoreContext, args: argparse.Namespace) -> int:
    try:
        report = context.run_layout_migrations(mappings_from_args(args.mappings))
    except InvalidKeyError as exc:
        log_mgr.console_error(str(exc), logger_obj=logger)
        return 2
    _print_model(report)
    return 0 if report.documents_ready and report.audiobooks_ready else 1


def run_migrate_v2(context: DocstoreContext, args: argparse.Namespace) -> int:
    try:
        context.require_object_store()
        context.prepare_layout()
        report = context.object_storage_migrator.run(
            dry_run=args.dry_run,
            delete_local=args.delete_local,
            include_audiobooks=args.include_audiobooks,
            namespace=args.namespace,
        )
    except ObjectStorageNotConfiguredError as exc:
        log_mgr.console_error(str(exc), logger_obj=logger)
        return 1
    _print_model(report)
    return 1 if report.failed else 0


def run_scan(context: DocstoreContext, args: argparse.Namespace) -> int:
    counts = context.indexer.scan_and_populate()
    log_mgr.console_info(
        "Unclaimed: %s documents, %s audiobooks",
        counts.documents,
        counts.audiobooks,
        logger_obj=logger,
    )
    return 0


def run_claim(context: DocstoreContext, args: argparse.Namespace) -> int:
    source = args.from_owner or unclaimed_user_id(args.namespace)
    context.indexer.ensure_indexed()
    try:
        result = context.claim_engine.claim(source, args.to_owner, namespace=args.namespace)
    except ClaimError as exc:
        log_mgr.console_error(str(exc), logger_obj=logger)
        return 2
    log_mgr.console_info(
        "Claimed %s documents and %s audiobooks for %s (%s failed)",
        result.documents,
        result.audiobooks,
        args.to_owner,
        result.failed,
        logger_obj=logger,
    )
    return 1 if result.failed else 0


def run_prune(context: DocstoreContext, args: argparse.Namespace) -> int:
    owner = args.owner_id or unclaimed_user_id(args.namespace)
    try:
        result = context.pruner.reconcile_book(args.book_id, owner, args.namespace)
    except InvalidKeyError as exc:
        log_mgr.console_error(str(exc), logger_obj=logger)
        return 2
    log_mgr.console_info(
        "Book rows deleted: %s; chapter rows deleted: %s",
        result.book_deleted,
        result.chapters_deleted,
        logger_obj=logger,
    )
    return 0


def run_status(context: DocstoreContext, args: argparse.Namespace) -> int:
    log_mgr.console_info("Root: %s", context.root, logger_obj=logger)
    log_mgr.console_info("Backend: %s", context.store.backend_name, logger_obj=logger)
    log_mgr.console_info(
        "documents_v1: %s", context.documents_migrator.status().value, logger_obj=logger
    )
    log_mgr.console_info(
        "audiobooks_v1: %s", context.audiobooks_migrator.status().value, logger_obj=logger
    )
    counts = context.indexer.unclaimed_counts()
    log_mgr.console_info(
        "Unclaimed rows: %s documents, %s audiobooks",
        counts.documents,
        counts.audiobooks,
        logger_obj=logger,
    )
    return 0


COMMANDS = {
    "migrate-v1": run_migrate_v1,
    "migrate-v2": run_migrate_v2,
    "scan": run_scan,
    "claim": run_claim,
    "prune": run_prune,
    "status": run_status,
}


def execute_command(context: DocstoreContext, args: argparse.Namespace) -> int:
    handler = COMMANDS[args.command]
    try:
        return handler(context, args)
    except MigrationError as exc:
        log_mgr.console_error(str(exc), logger_obj=logger)
        return 1


__all__ = ["COMMANDS", "execute_command", "settings_overrides"]
