from __future__ import annotations

import dataclasses
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol, Sequence

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from archive_migrator.clients.source import DocumentInventory, dedupe_preserving_order
from archive_migrator.logging import clear_log_context, set_log_context
from archive_migrator.pipeline.types import MigrationResult, MigrationRunReport
from archive_migrator.storage.run_report import write_run_report
from archive_migrator.utils.error_taxonomy import is_retryable_error_code

logger = logging.getLogger("archive_migrator")


class DocumentMigrator(Protocol):
    def migrate(
        self,
        doc_id: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> MigrationResult: ...


def get_run_id(run_id: str | None) -> str:
    if run_id in (None, "", "auto"):
        return uuid.uuid4().hex
    return run_id


class MigrationOrchestrator:
    """Submits documents to the coordinator with at most ``concurrency`` in flight.

    Failures stay isolated per document. With ``max_attempts > 1`` a document
    whose failure is transient (fetch or upload) is re-run from the start.
    """

    def __init__(
        self,
        *,
        coordinator: DocumentMigrator,
        inventory: DocumentInventory | None = None,
        concurrency: int = 4,
        max_attempts: int = 1,
        retry_backoff_seconds: float = 5.0,
        report_dir: Path | str | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.coordinator = coordinator
        self.inventory = inventory
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.report_dir = Path(report_dir) if report_dir is not None else None
        self.sleep_fn = sleep_fn
        self._cancel_event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested; in-flight documents stop at next stage")
        self._cancel_event.set()

    def run(self, *, run_id: str | None = None) -> MigrationRunReport:
        if self.inventory is None:
            raise ValueError("An inventory is required to enumerate pending documents")
        doc_ids = list(self.inventory.list_pending_documents())
        return self.migrate_all(doc_ids, run_id=run_id)

    def migrate_all(
        self,
        doc_ids: Sequence[str],
        *,
        run_id: str | None = None,
    ) -> MigrationRunReport:
        unique_ids = dedupe_preserving_order(doc_ids)
        if len(unique_ids) < len(doc_ids):
            logger.warning(
                f"Ignoring {len(doc_ids) - len(unique_ids)} duplicate document ids"
            )
        doc_ids = unique_ids
        resolved_run_id = get_run_id(run_id)
        started_at = _utc_now()
        set_log_context(run_id=resolved_run_id)
        logger.info(
            "Starting migration run",
            extra={
                "metrics": {
                    "documents": len(doc_ids),
                    "concurrency": self.concurrency,
                }
            },
        )

        results: dict[int, MigrationResult] = {}
        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="migrate",
        ) as pool:
            futures = {
                pool.submit(self._migrate_document, doc_id, resolved_run_id): index
                for index, doc_id in enumerate(doc_ids)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        report = MigrationRunReport(
            run_id=resolved_run_id,
            started_at=started_at,
            finished_at=_utc_now(),
            results=tuple(results[index] for index in range(len(doc_ids))),
            cancelled=self.cancelled,
        )
        if self.report_dir is not None:
            report_path = write_run_report(report_dir=self.report_dir, report=report)
            logger.info(f"Run report written to {report_path}")

        logger.info(
            "Migration run finished",
            extra={
                "metrics": {
                    "documents_done": report.succeeded_count,
                    "documents_failed": report.failed_count,
                }
            },
        )
        clear_log_context(["run_id"])
        return report

    def _migrate_document(self, doc_id: str, run_id: str) -> MigrationResult:
        set_log_context(run_id=run_id)
        try:
            retrying = Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_backoff_seconds),
                retry=retry_if_result(self._should_rerun),
                sleep=self.sleep_fn,
                before_sleep=self._log_rerun,
                retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            )
            attempts = 0

            def attempt() -> MigrationResult:
                nonlocal attempts
                attempts += 1
                return self.coordinator.migrate(doc_id, cancel_event=self._cancel_event)

            result = retrying(attempt)
            return dataclasses.replace(result, attempts=attempts)
        finally:
            clear_log_context(["run_id"])

    def _should_rerun(self, result: MigrationResult) -> bool:
        if result.succeeded or self.cancelled:
            return False
        return is_retryable_error_code(result.error_code)

    @staticmethod
    def _log_rerun(retry_state) -> None:
        result = retry_state.outcome.result()
        logger.warning(
            f"Re-running {result.doc_id} after attempt {retry_state.attempt_number} "
            f"failed at {result.stage.value} [{result.error_code}]",
            extra={"stage": result.stage.value},
        )


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
