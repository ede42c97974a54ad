from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Sequence
from zipfile import ZIP_DEFLATED, LargeZipFile, ZipFile, ZipInfo

from archive_migrator.archive.types import PageImage
from archive_migrator.utils.error_taxonomy import PackagingError

MANIFEST_FILE_NAME = "manifest.json"
PAGE_NAME_TEMPLATE = "page-{index:03d}{extension}"

_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FIXED_EXTERNAL_ATTR = 0o100644 << 16
_UNIX_CREATE_SYSTEM = 3
_FALLBACK_EXTENSION = ".bin"


def custody_entry_names(pages: Sequence[PageImage]) -> list[str]:
    names = [
        PAGE_NAME_TEMPLATE.format(
            index=index, extension=page.extension or _FALLBACK_EXTENSION
        )
        for index, page in enumerate(pages, start=1)
    ]
    names.append(MANIFEST_FILE_NAME)
    return names


def serialize_manifest(doc_id: str, page_count: int) -> bytes:
    return json.dumps(
        {"docId": doc_id, "pageCount": page_count},
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")


def pack_custody_archive(doc_id: str, pages: Sequence[PageImage]) -> bytes:
    """Build the chain-of-custody ZIP for ``pages``.

    Entries are ``page-001.<ext>`` ... in input order followed by
    ``manifest.json``. Timestamps and attributes are pinned so identical
    input always yields identical bytes.
    """
    if not pages:
        raise ValueError("At least one page is required")

    names = custody_entry_names(pages)
    payloads = [page.data for page in pages]
    payloads.append(serialize_manifest(doc_id, len(pages)))

    buffer = io.BytesIO()
    try:
        with ZipFile(buffer, mode="w") as archive:
            for name, data in zip(names, payloads):
                archive.writestr(_pinned_zip_info(name), data)
    except (OSError, ValueError, LargeZipFile) as error:
        raise PackagingError(f"Failed to build custody archive: {error}") from error
    return buffer.getvalue()


def write_custody_archive(
    path: Path | str, doc_id: str, pages: Sequence[PageImage]
) -> Path:
    target = Path(path)
    data = pack_custody_archive(doc_id, pages)
    try:
        with target.open("wb") as destination:
            destination.write(data)
    except OSError as error:
        raise PackagingError(
            f"Failed to write custody archive to {target}: {error}"
        ) from error
    return target


def _pinned_zip_info(name: str) -> ZipInfo:
    info = ZipInfo(filename=name, date_time=_FIXED_DATE_TIME)
    info.compress_type = ZIP_DEFLATED
    info.create_system = _UNIX_CREATE_SYSTEM
    info.external_attr = _FIXED_EXTERNAL_ATTR
    return info
