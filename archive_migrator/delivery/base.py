from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import BinaryIO, Protocol, Union

from archive_migrator.utils.error_taxonomy import InvalidDocumentIdError

CUSTODY_ARCHIVE_NAME = "chain.zip"
MERGED_DOCUMENT_NAME = "document.pdf"
METADATA_NAME = "meta.xml"

ObjectSource = Union[bytes, BinaryIO]


class RemoteTarget(Protocol):
    def ensure_directory(self, path: str) -> None: ...

    def write_object(self, path: str, source: ObjectSource) -> None: ...


@dataclass(frozen=True, slots=True)
class RemoteLayout:
    directory: str
    custody_archive_path: str
    merged_document_path: str
    metadata_path: str

    @property
    def paths(self) -> tuple[str, str, str]:
        return (
            self.custody_archive_path,
            self.merged_document_path,
            self.metadata_path,
        )


def validate_document_id(doc_id: str) -> str:
    if not doc_id or not doc_id.strip():
        raise InvalidDocumentIdError("Document id must not be empty")
    if doc_id in {".", ".."}:
        raise InvalidDocumentIdError(f"Document id is a relative path marker: {doc_id}")
    if any(char in doc_id for char in ("/", "\\", "\x00")):
        raise InvalidDocumentIdError(
            f"Document id must not contain path separators: {doc_id!r}"
        )
    return doc_id


def build_remote_layout(remote_root: str, doc_id: str) -> RemoteLayout:
    directory = posixpath.join(remote_root or "/", validate_document_id(doc_id))
    return RemoteLayout(
        directory=directory,
        custody_archive_path=posixpath.join(directory, CUSTODY_ARCHIVE_NAME),
        merged_document_path=posixpath.join(directory, MERGED_DOCUMENT_NAME),
        metadata_path=posixpath.join(directory, METADATA_NAME),
    )
