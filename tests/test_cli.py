from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

import pytest

from archive_migrator import cli
from tests.helpers import make_page_archive, make_zip


class _FakeHttpSource:
    payloads: dict[str, bytes] = {}
    pending: list[str] = []

    def __init__(self, config) -> None:
        self.config = config
        self.closed = False

    def fetch_archive(self, doc_id: str) -> bytes:
        return self.payloads[doc_id]

    def list_pending_documents(self) -> list[str]:
        return list(self.pending)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def local_env(monkeypatch, tmp_path: Path) -> Iterator[Path]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MIGRATOR_TARGET_KIND", "local")
    monkeypatch.setenv("MIGRATOR_TARGET_LOCAL_ROOT", str(tmp_path / "remote"))
    monkeypatch.setenv("MIGRATOR_REPORT_DIR", str(tmp_path / "reports"))
    monkeypatch.setenv("MIGRATOR_TEMP_DIR", str(tmp_path / "tmp"))
    monkeypatch.setattr(cli, "HttpArchiveSource", _FakeHttpSource)
    monkeypatch.setattr(cli, "_install_cancel_handlers", lambda orchestrator: None)
    _FakeHttpSource.payloads = {
        "doc-1": make_page_archive([(20, 10), (10, 20)]),
        "doc-2": make_page_archive([(15, 15)]),
        "doc-bad": make_zip([("notes.txt", b"nothing")]),
    }
    _FakeHttpSource.pending = ["doc-1", "doc-2"]
    yield tmp_path
    logger = logging.getLogger("archive_migrator")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_validate_config(local_env: Path, capsys) -> None:
    assert cli.main(["validate-config"]) == 0
    assert "Config is valid." in capsys.readouterr().out


def test_invalid_config_exits_with_config_error(local_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("MIGRATOR_CONCURRENCY", "0")

    assert cli.main(["validate-config"]) == 2


def test_migrate_pending_documents(local_env: Path) -> None:
    exit_code = cli.main(["migrate", "--run-id", "run-cli"])

    assert exit_code == 0
    for doc_id in ("doc-1", "doc-2"):
        directory = local_env / "remote" / "incoming" / doc_id
        assert sorted(path.name for path in directory.iterdir()) == [
            "chain.zip",
            "document.pdf",
            "meta.xml",
        ]
    report = json.loads((local_env / "reports" / "run-cli.json").read_text("utf-8"))
    assert report["stats"]["documents_done"] == 2
    assert list((local_env / "tmp").iterdir()) == []


def test_migrate_one_reports_failures(local_env: Path, capsys) -> None:
    exit_code = cli.main(["migrate-one", "doc-1", "doc-bad", "--run-id", "run-one"])

    assert exit_code == 1
    output = capsys.readouterr().out
    summary = json.loads(output[output.index('{\n  "run_id"') :])
    assert summary["documents_done"] == 1
    assert summary["documents_failed"] == 1
    assert summary["failures"] == [
        {"doc_id": "doc-bad", "stage": "extracting", "error_code": "NO_PAGES_FOUND"}
    ]


def test_migrate_respects_limit(local_env: Path) -> None:
    assert cli.main(["migrate", "--run-id", "run-limit", "--limit", "1"]) == 0

    assert (local_env / "remote" / "incoming" / "doc-1").is_dir()
    assert not (local_env / "remote" / "incoming" / "doc-2").exists()


def test_migrate_uses_inventory_file(local_env: Path, monkeypatch) -> None:
    inventory = local_env / "inventory.yaml"
    inventory.write_text("- doc-2\n", encoding="utf-8")
    monkeypatch.setenv("MIGRATOR_INVENTORY_FILE", str(inventory))

    assert cli.main(["migrate", "--run-id", "run-inv"]) == 0

    assert (local_env / "remote" / "incoming" / "doc-2").is_dir()
    assert not (local_env / "remote" / "incoming" / "doc-1").exists()


def test_missing_inventory_file_is_config_error(local_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("MIGRATOR_INVENTORY_FILE", str(local_env / "missing.yaml"))

    assert cli.main(["migrate", "--run-id", "run-missing"]) == 2


def test_negative_limit_is_rejected(local_env: Path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["migrate", "--limit", "-1"])

    assert excinfo.value.code == 2
    assert "must be >= 0" in capsys.readouterr().err
    assert not (local_env / "remote").exists()


def test_migrate_one_ignores_repeated_ids(local_env: Path, capsys) -> None:
    assert cli.main(["migrate-one", "doc-1", "doc-1", "--run-id", "run-dup"]) == 0

    output = capsys.readouterr().out
    summary = json.loads(output[output.index('{\n  "run_id"') :])
    assert summary["documents_done"] == 1
    report = json.loads((local_env / "reports" / "run-dup.json").read_text("utf-8"))
    assert [item["doc_id"] for item in report["documents"]] == ["doc-1"]
