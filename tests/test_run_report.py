from __future__ import annotations

from pathlib import Path

import pytest

from archive_migrator.pipeline.types import MigrationResult, MigrationRunReport, Stage
from archive_migrator.storage.run_report import (
    get_report_path,
    read_run_report,
    write_run_report,
)


def _report() -> MigrationRunReport:
    return MigrationRunReport(
        run_id="r-1",
        started_at="2026-01-01T00:00:00+00:00",
        finished_at="2026-01-01T00:01:00+00:00",
        results=(
            MigrationResult(
                doc_id="doc-1",
                status="done",
                stage=Stage.DONE,
                remote_paths=("/incoming/doc-1/chain.zip",),
                page_count=2,
                custody_digest="a" * 64,
            ),
            MigrationResult(
                doc_id="doc-2",
                status="failed",
                stage=Stage.UPLOADING,
                partial_remote_paths=("/incoming/doc-2/chain.zip",),
                error_code="UPLOAD_ERROR",
                error_message="connection reset",
                attempts=3,
            ),
        ),
    )


def test_run_report_write_and_read(tmp_path: Path) -> None:
    report_dir = tmp_path / "data" / "reports"

    path = write_run_report(report_dir=report_dir, report=_report())

    assert path == get_report_path(report_dir, "r-1")
    payload = read_run_report(report_dir=report_dir, run_id="r-1")
    assert payload["stats"] == {
        "documents_total": 2,
        "documents_done": 1,
        "documents_failed": 1,
    }
    assert payload["cancelled"] is False
    failed = payload["documents"][1]
    assert failed["stage"] == "uploading"
    assert failed["error_code"] == "UPLOAD_ERROR"
    assert failed["partial_remote_paths"] == ["/incoming/doc-2/chain.zip"]
    assert failed["attempts"] == 3
    assert "written_at" in payload


def test_read_missing_report_returns_empty(tmp_path: Path) -> None:
    assert read_run_report(report_dir=tmp_path, run_id="nope") == {}


def test_read_report_rejects_non_object(tmp_path: Path) -> None:
    get_report_path(tmp_path, "bad").write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError, match="must be an object"):
        read_run_report(report_dir=tmp_path, run_id="bad")
