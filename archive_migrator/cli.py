from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from archive_migrator.clients.inventory import load_inventory_file
from archive_migrator.clients.source import DocumentInventory, HttpArchiveSource
from archive_migrator.config.settings import Settings
from archive_migrator.delivery.local_target import LocalDirectoryTarget
from archive_migrator.delivery.sftp_target import SftpTarget
from archive_migrator.logging import setup_logging
from archive_migrator.pipeline.coordinator import DeliveryCoordinator
from archive_migrator.pipeline.orchestrator import MigrationOrchestrator
from archive_migrator.pipeline.types import MigrationRunReport
from archive_migrator.storage.workspace import WorkspaceManager
from archive_migrator.utils.error_taxonomy import FetchError

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG_ERROR = 2


def build_remote_target(settings: Settings) -> LocalDirectoryTarget | SftpTarget:
    if settings.target_kind == "local":
        return LocalDirectoryTarget(settings.resolved_target_local_root)
    return SftpTarget(settings.sftp_config)


def build_inventory(settings: Settings, source: HttpArchiveSource) -> DocumentInventory:
    if settings.inventory_file is not None:
        return load_inventory_file(settings.inventory_file)
    return source


def build_orchestrator(
    settings: Settings,
    *,
    source: HttpArchiveSource,
    target: LocalDirectoryTarget | SftpTarget,
) -> MigrationOrchestrator:
    coordinator = DeliveryCoordinator(
        source=source,
        target=target,
        remote_root=settings.target_remote_directory,
        workspace_manager=WorkspaceManager(settings.temp_dir),
        page_suffixes=settings.page_suffixes,
        archive_limits=settings.archive_limits,
        parallel_artifact_build=settings.parallel_artifact_build,
    )
    return MigrationOrchestrator(
        coordinator=coordinator,
        inventory=build_inventory(settings, source),
        concurrency=settings.concurrency,
        max_attempts=settings.max_document_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        report_dir=settings.resolved_report_dir,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="archive-migrator")
    parser.add_argument(
        "--env-file", type=str, default=".env", help="Path to .env file"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate-config")

    p_mig = subparsers.add_parser("migrate", help="Migrate all pending documents")
    p_mig.add_argument("--run-id", default="auto")
    p_mig.add_argument("--limit", type=_non_negative_int, default=None)

    p_one = subparsers.add_parser("migrate-one", help="Migrate the given documents")
    p_one.add_argument("doc_ids", nargs="+")
    p_one.add_argument("--run-id", default="auto")

    args = parser.parse_args(argv)

    env_file = args.env_file if Path(args.env_file).exists() else None
    try:
        settings = Settings(_env_file=env_file)
    except ValidationError as e:
        print(f"Config validation error:\n{e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.command == "validate-config":
        print("Config is valid.")
        return EXIT_OK

    setup_logging(level=getattr(logging, settings.log_level), log_file=settings.log_file)

    source = HttpArchiveSource(settings.http_source_config)
    target = build_remote_target(settings)
    try:
        try:
            orchestrator = build_orchestrator(settings, source=source, target=target)
        except (FileNotFoundError, ValueError) as e:
            print(f"Failed to load inventory: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        _install_cancel_handlers(orchestrator)

        if args.command == "migrate":
            try:
                doc_ids = list(orchestrator.inventory.list_pending_documents())
            except FetchError as e:
                print(f"Failed to list pending documents: {e}", file=sys.stderr)
                return EXIT_FAILURES
            if args.limit is not None:
                doc_ids = doc_ids[: args.limit]
            report = orchestrator.migrate_all(doc_ids, run_id=args.run_id)
        else:
            report = orchestrator.migrate_all(args.doc_ids, run_id=args.run_id)
    finally:
        source.close()
        target.close()

    print(json.dumps(_summary(report), ensure_ascii=False, indent=2))
    return EXIT_OK if report.all_succeeded else EXIT_FAILURES


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from error
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {parsed}")
    return parsed


def _install_cancel_handlers(orchestrator: MigrationOrchestrator) -> None:
    def handler(signum, frame):
        del frame
        logging.getLogger("archive_migrator").warning(
            f"Received signal {signum}, cancelling migration run"
        )
        orchestrator.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, handler)


def _summary(report: MigrationRunReport) -> dict:
    return {
        "run_id": report.run_id,
        "documents_done": report.succeeded_count,
        "documents_failed": report.failed_count,
        "cancelled": report.cancelled,
        "failures": [
            {
                "doc_id": result.doc_id,
                "stage": result.stage.value,
                "error_code": result.error_code,
            }
            for result in report.results
            if not result.succeeded
        ],
    }


if __name__ == "__main__":
    sys.exit(main())
