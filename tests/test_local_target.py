from __future__ import annotations

import io
from pathlib import Path

import pytest

from archive_migrator.delivery.base import build_remote_layout, validate_document_id
from archive_migrator.delivery.local_target import LocalDirectoryTarget
from archive_migrator.utils.error_taxonomy import InvalidDocumentIdError


def test_write_object_roots_absolute_paths(tmp_path: Path) -> None:
    target = LocalDirectoryTarget(tmp_path)

    target.ensure_directory("/incoming/doc-1")
    target.write_object("/incoming/doc-1/meta.xml", b"<Document/>")
    target.write_object("/incoming/doc-1/chain.zip", io.BytesIO(b"PK"))

    directory = tmp_path / "incoming" / "doc-1"
    assert (directory / "meta.xml").read_bytes() == b"<Document/>"
    assert (directory / "chain.zip").read_bytes() == b"PK"
    assert sorted(path.name for path in directory.iterdir()) == [
        "chain.zip",
        "meta.xml",
    ]


def test_write_object_overwrites_existing(tmp_path: Path) -> None:
    target = LocalDirectoryTarget(tmp_path)
    target.ensure_directory("/d")

    target.write_object("/d/meta.xml", b"old")
    target.write_object("/d/meta.xml", b"new")

    assert (tmp_path / "d" / "meta.xml").read_bytes() == b"new"


def test_failed_write_leaves_no_partial_file(tmp_path: Path) -> None:
    class _BrokenStream(io.RawIOBase):
        def readinto(self, buffer):
            raise OSError("disk gone")

    target = LocalDirectoryTarget(tmp_path)
    target.ensure_directory("/d")

    with pytest.raises(OSError, match="disk gone"):
        target.write_object("/d/chain.zip", _BrokenStream())

    assert list((tmp_path / "d").iterdir()) == []


def test_resolve_rejects_traversal(tmp_path: Path) -> None:
    target = LocalDirectoryTarget(tmp_path / "root")

    with pytest.raises(ValueError, match="Path traversal"):
        target.resolve("/incoming/../../etc/passwd")


def test_build_remote_layout() -> None:
    layout = build_remote_layout("/incoming", "doc-001")

    assert layout.directory == "/incoming/doc-001"
    assert layout.paths == (
        "/incoming/doc-001/chain.zip",
        "/incoming/doc-001/document.pdf",
        "/incoming/doc-001/meta.xml",
    )
    assert build_remote_layout("", "d").directory == "/d"


@pytest.mark.parametrize("doc_id", ["", "   ", ".", "..", "a/b", "a\\b", "a\x00b"])
def test_validate_document_id_rejects_unsafe_ids(doc_id: str) -> None:
    with pytest.raises(InvalidDocumentIdError):
        validate_document_id(doc_id)


def test_validate_document_id_accepts_plain_ids() -> None:
    assert validate_document_id("DOC-2024.001") == "DOC-2024.001"
