from __future__ import annotations

import logging
import re
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

logger = logging.getLogger("archive_migrator")

_UNSAFE_PREFIX_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class DocumentWorkspace:
    doc_id: str
    root_path: Path
    custody_archive_path: Path
    merged_document_path: Path


class WorkspaceManager:
    """Hands out private temporary directories, one per in-flight document."""

    def __init__(self, temp_root: Path | str | None = None) -> None:
        self.temp_root = Path(temp_root) if temp_root is not None else None

    @contextmanager
    def document_workspace(self, doc_id: str) -> Iterator[DocumentWorkspace]:
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        root_path = Path(
            tempfile.mkdtemp(
                prefix=f"migrate-{_safe_prefix(doc_id)}-",
                dir=self.temp_root,
            )
        )
        workspace = DocumentWorkspace(
            doc_id=doc_id,
            root_path=root_path,
            custody_archive_path=root_path / "chain.zip",
            merged_document_path=root_path / "document.pdf",
        )
        try:
            yield workspace
        finally:
            release_workspace(workspace)


def release_workspace(workspace: DocumentWorkspace) -> bool:
    try:
        shutil.rmtree(workspace.root_path)
    except FileNotFoundError:
        return True
    except OSError as error:
        logger.warning(
            f"Failed to remove workspace {workspace.root_path}: {error}",
            extra={"stage": "cleaning"},
        )
        return False
    return True


def _safe_prefix(doc_id: str) -> str:
    return _UNSAFE_PREFIX_CHARS.sub("_", doc_id)[:40] or "doc"
