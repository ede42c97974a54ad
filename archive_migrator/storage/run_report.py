from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from archive_migrator.pipeline.types import MigrationResult, MigrationRunReport

REPORT_SUFFIX = ".json"


def write_run_report(*, report_dir: Path | str, report: MigrationRunReport) -> Path:
    path = get_report_path(report_dir, report.run_id)
    _write_json(path, build_report_payload(report))
    return path


def read_run_report(*, report_dir: Path | str, run_id: str) -> dict[str, Any]:
    path = get_report_path(report_dir, run_id)
    if not path.exists():
        return {}

    parsed = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError(f"Run report root must be an object: {path}")
    return parsed


def get_report_path(report_dir: Path | str, run_id: str) -> Path:
    return Path(report_dir) / f"{run_id}{REPORT_SUFFIX}"


def build_report_payload(report: MigrationRunReport) -> dict[str, Any]:
    return {
        "run_id": report.run_id,
        "started_at": report.started_at,
        "finished_at": report.finished_at,
        "cancelled": report.cancelled,
        "stats": {
            "documents_total": len(report.results),
            "documents_done": report.succeeded_count,
            "documents_failed": report.failed_count,
        },
        "documents": [_result_entry(result) for result in report.results],
        "written_at": _utc_now(),
    }


def _result_entry(result: MigrationResult) -> dict[str, Any]:
    entry = asdict(result)
    entry["stage"] = result.stage.value
    entry["remote_paths"] = list(result.remote_paths)
    entry["partial_remote_paths"] = list(result.partial_remote_paths)
    return entry


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
