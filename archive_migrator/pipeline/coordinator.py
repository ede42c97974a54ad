from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, TypeVar

from archive_migrator.archive.custody import write_custody_archive
from archive_migrator.archive.hashing import digest_file
from archive_migrator.archive.reader import (
    DEFAULT_PAGE_SUFFIXES,
    ArchiveLimits,
    extract_pages,
)
from archive_migrator.archive.types import PageImage
from archive_migrator.clients.source import ArchiveSource
from archive_migrator.delivery.base import RemoteLayout, RemoteTarget, build_remote_layout
from archive_migrator.document.merger import MergedDocument, write_merged_document
from archive_migrator.document.metadata import compose_metadata, render_metadata_xml
from archive_migrator.logging import clear_log_context, get_log_context, set_log_context
from archive_migrator.pipeline.types import MigrationResult, Stage
from archive_migrator.storage.workspace import DocumentWorkspace, WorkspaceManager
from archive_migrator.utils.error_taxonomy import (
    FetchError,
    MigrationCancelledError,
    UploadError,
    build_error_details,
    classify_error,
)

logger = logging.getLogger("archive_migrator")

T = TypeVar("T")


@dataclass(slots=True)
class _RunState:
    stage: Stage = Stage.FETCHING
    page_count: int | None = None
    custody_digest: str | None = None


class DeliveryCoordinator:
    """Runs one document through fetch, extract, package, merge, compose, upload.

    ``migrate`` never raises for a stage failure: every run ends in exactly
    one ``MigrationResult``. The per-document workspace is removed on every
    exit path, including cancellation.
    """

    def __init__(
        self,
        *,
        source: ArchiveSource,
        target: RemoteTarget,
        remote_root: str = "/incoming",
        workspace_manager: WorkspaceManager | None = None,
        page_suffixes: Iterable[str] = DEFAULT_PAGE_SUFFIXES,
        archive_limits: ArchiveLimits | None = None,
        parallel_artifact_build: bool = True,
    ) -> None:
        self.source = source
        self.target = target
        self.remote_root = remote_root
        self.workspace_manager = workspace_manager or WorkspaceManager()
        self.page_suffixes = tuple(page_suffixes)
        self.archive_limits = archive_limits or ArchiveLimits()
        self.parallel_artifact_build = parallel_artifact_build

    def migrate(
        self,
        doc_id: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> MigrationResult:
        started_at = time.perf_counter()
        state = _RunState()
        set_log_context(doc_id=doc_id)
        try:
            remote_paths = self._run(doc_id, state=state, cancel_event=cancel_event)
        except Exception as error:  # noqa: BLE001
            result = self._failed_result(
                doc_id, state=state, error=error, started_at=started_at
            )
        else:
            state.stage = Stage.DONE
            result = MigrationResult(
                doc_id=doc_id,
                status="done",
                stage=Stage.DONE,
                remote_paths=remote_paths,
                page_count=state.page_count,
                custody_digest=state.custody_digest,
                duration_ms=_elapsed_ms(started_at),
            )
            logger.info(
                f"Completed {doc_id} (pages: {state.page_count})",
                extra={
                    "stage": Stage.DONE.value,
                    "duration_ms": result.duration_ms,
                    "metrics": {"pages": state.page_count},
                },
            )
        finally:
            clear_log_context(["doc_id", "stage"])
        return result

    def _run(
        self,
        doc_id: str,
        *,
        state: _RunState,
        cancel_event: threading.Event | None,
    ) -> tuple[str, ...]:
        self._enter(Stage.FETCHING, state=state, cancel_event=cancel_event)
        layout = build_remote_layout(self.remote_root, doc_id)
        archive_bytes = self._fetch(doc_id)
        logger.info("Fetched archive", extra={"metrics": {"bytes": len(archive_bytes)}})

        self._enter(Stage.EXTRACTING, state=state, cancel_event=cancel_event)
        pages = extract_pages(
            archive_bytes,
            suffixes=self.page_suffixes,
            limits=self.archive_limits,
        )
        del archive_bytes
        state.page_count = len(pages)
        logger.info("Extracted pages", extra={"metrics": {"pages": len(pages)}})

        with self.workspace_manager.document_workspace(doc_id) as workspace:
            try:
                self._build_artifacts(
                    doc_id,
                    pages,
                    workspace=workspace,
                    state=state,
                    cancel_event=cancel_event,
                )

                self._enter(Stage.COMPOSING, state=state, cancel_event=cancel_event)
                state.custody_digest = digest_file(workspace.custody_archive_path)
                metadata = compose_metadata(doc_id, len(pages), state.custody_digest)
                metadata_bytes = render_metadata_xml(metadata)

                self._enter(Stage.UPLOADING, state=state, cancel_event=cancel_event)
                remote_paths = self._upload(layout, workspace, metadata_bytes)
                state.stage = Stage.CLEANING
            finally:
                logger.info(
                    f"Removing workspace {workspace.root_path}",
                    extra={"stage": Stage.CLEANING.value},
                )
        return remote_paths

    def _enter(
        self,
        stage: Stage,
        *,
        state: _RunState,
        cancel_event: threading.Event | None,
    ) -> None:
        state.stage = stage
        set_log_context(stage=stage.value)
        if cancel_event is not None and cancel_event.is_set():
            raise MigrationCancelledError(f"Cancelled before {stage.value}")
        logger.info(f"Entering {stage.value}")

    def _fetch(self, doc_id: str) -> bytes:
        try:
            payload = self.source.fetch_archive(doc_id)
        except FetchError:
            raise
        except Exception as error:  # noqa: BLE001
            raise FetchError(f"Failed to fetch archive for {doc_id}: {error}") from error
        if not isinstance(payload, (bytes, bytearray)):
            raise FetchError(f"Source returned {type(payload).__name__}, expected bytes")
        return bytes(payload)

    def _build_artifacts(
        self,
        doc_id: str,
        pages: Sequence[PageImage],
        *,
        workspace: DocumentWorkspace,
        state: _RunState,
        cancel_event: threading.Event | None,
    ) -> MergedDocument:
        if not self.parallel_artifact_build:
            self._enter(Stage.PACKAGING, state=state, cancel_event=cancel_event)
            write_custody_archive(workspace.custody_archive_path, doc_id, pages)
            self._enter(Stage.MERGING, state=state, cancel_event=cancel_event)
            return write_merged_document(workspace.merged_document_path, pages)

        self._enter(Stage.PACKAGING, state=state, cancel_event=cancel_event)
        logger.info(f"Entering {Stage.MERGING.value}", extra={"stage": Stage.MERGING.value})
        context = {"doc_id": doc_id, "run_id": _current_run_id()}
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="artifacts") as pool:
            custody_future = pool.submit(
                _with_log_context,
                context,
                Stage.PACKAGING,
                lambda: write_custody_archive(
                    workspace.custody_archive_path, doc_id, pages
                ),
            )
            merge_future = pool.submit(
                _with_log_context,
                context,
                Stage.MERGING,
                lambda: write_merged_document(workspace.merged_document_path, pages),
            )
            custody_error = custody_future.exception()
            merge_error = merge_future.exception()

        if custody_error is not None:
            raise custody_error
        if merge_error is not None:
            state.stage = Stage.MERGING
            raise merge_error
        state.stage = Stage.MERGING
        return merge_future.result()

    def _upload(
        self,
        layout: RemoteLayout,
        workspace: DocumentWorkspace,
        metadata_bytes: bytes,
    ) -> tuple[str, ...]:
        written: list[str] = []
        try:
            self.target.ensure_directory(layout.directory)
            with workspace.custody_archive_path.open("rb") as stream:
                self.target.write_object(layout.custody_archive_path, stream)
            written.append(layout.custody_archive_path)
            with workspace.merged_document_path.open("rb") as stream:
                self.target.write_object(layout.merged_document_path, stream)
            written.append(layout.merged_document_path)
            self.target.write_object(layout.metadata_path, metadata_bytes)
            written.append(layout.metadata_path)
        except Exception as error:  # noqa: BLE001
            raise UploadError(
                f"Delivery to {layout.directory} failed after "
                f"{len(written)} of {len(layout.paths)} objects: {error}",
                written_paths=written,
            ) from error
        return tuple(written)

    def _failed_result(
        self,
        doc_id: str,
        *,
        state: _RunState,
        error: Exception,
        started_at: float,
    ) -> MigrationResult:
        error_code = classify_error(error)
        partial = getattr(error, "written_paths", ())
        result = MigrationResult(
            doc_id=doc_id,
            status="failed",
            stage=state.stage,
            partial_remote_paths=tuple(partial),
            page_count=state.page_count,
            custody_digest=state.custody_digest,
            error_code=error_code,
            error_message=str(error),
            duration_ms=_elapsed_ms(started_at),
        )
        log_method = logger.warning if error_code == "CANCELLED" else logger.error
        log_method(
            f"Migration of {doc_id} failed at {state.stage.value} "
            f"[{error_code}]: {build_error_details(error)}",
            extra={"stage": state.stage.value, "duration_ms": result.duration_ms},
        )
        return result


def _with_log_context(context: dict, stage: Stage, operation: Callable[[], T]) -> T:
    set_log_context(**context, stage=stage.value)
    try:
        return operation()
    finally:
        clear_log_context(["doc_id", "run_id", "stage"])


def _current_run_id() -> str | None:
    return get_log_context().get("run_id")


def _elapsed_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000, 2)
