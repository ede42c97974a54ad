from __future__ import annotations

import io
import zlib
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable
from zipfile import BadZipFile, LargeZipFile, ZipFile, ZipInfo

from archive_migrator.archive.types import PageImage
from archive_migrator.utils.error_taxonomy import InvalidArchiveError, NoPagesFoundError

DEFAULT_PAGE_SUFFIXES: tuple[str, ...] = (".tif", ".tiff")

_DEFAULT_MAX_ENTRIES = 10_000
_DEFAULT_MAX_TOTAL_UNCOMPRESSED_BYTES = 2 * 1024 * 1024 * 1024
_DEFAULT_MAX_SINGLE_FILE_BYTES = 512 * 1024 * 1024
_DEFAULT_MAX_COMPRESSION_RATIO = 2000.0


@dataclass(frozen=True, slots=True)
class ArchiveLimits:
    max_entries: int = _DEFAULT_MAX_ENTRIES
    max_total_uncompressed_bytes: int = _DEFAULT_MAX_TOTAL_UNCOMPRESSED_BYTES
    max_single_file_bytes: int = _DEFAULT_MAX_SINGLE_FILE_BYTES
    max_compression_ratio: float = _DEFAULT_MAX_COMPRESSION_RATIO


def extract_pages(
    archive_bytes: bytes,
    *,
    suffixes: Iterable[str] = DEFAULT_PAGE_SUFFIXES,
    limits: ArchiveLimits | None = None,
) -> tuple[PageImage, ...]:
    """Return the page images of a ZIP payload in entry enumeration order.

    Directories and entries whose name does not end with one of ``suffixes``
    (case-insensitive) are skipped. Raises ``InvalidArchiveError`` when the
    payload is not a readable ZIP or breaches ``limits``, and
    ``NoPagesFoundError`` when nothing matches.
    """
    normalized_suffixes = _normalize_suffixes(suffixes)
    active_limits = limits or ArchiveLimits()

    try:
        with ZipFile(io.BytesIO(archive_bytes), mode="r") as archive:
            infos = archive.infolist()
            page_infos = [
                info
                for info in infos
                if _is_page_entry(info, suffixes=normalized_suffixes)
            ]
            _validate_limits(infos, page_infos, limits=active_limits)

            pages: list[PageImage] = []
            for info in page_infos:
                pages.append(
                    PageImage(source_name=info.filename, data=archive.read(info))
                )
    except InvalidArchiveError:
        raise
    except (BadZipFile, LargeZipFile, zlib.error, EOFError) as error:
        raise InvalidArchiveError(f"Invalid ZIP archive: {error}") from error
    except NotImplementedError as error:
        # unsupported compression method
        raise InvalidArchiveError(f"Unsupported ZIP entry: {error}") from error
    except RuntimeError as error:
        # encrypted entries
        raise InvalidArchiveError(f"Unreadable ZIP entry: {error}") from error

    if not pages:
        raise NoPagesFoundError(
            "No page entries matching "
            f"{', '.join(normalized_suffixes)} found in archive"
        )
    return tuple(pages)


def _normalize_suffixes(suffixes: Iterable[str]) -> tuple[str, ...]:
    normalized: list[str] = []
    for suffix in suffixes:
        value = suffix.strip().lower()
        if not value:
            continue
        if not value.startswith("."):
            value = f".{value}"
        normalized.append(value)
    if not normalized:
        raise ValueError("At least one page suffix is required")
    return tuple(normalized)


def _is_page_entry(info: ZipInfo, *, suffixes: tuple[str, ...]) -> bool:
    if info.is_dir():
        return False
    path = PurePosixPath(info.filename.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        return False
    return info.filename.lower().endswith(suffixes)


def _validate_limits(
    infos: list[ZipInfo],
    page_infos: list[ZipInfo],
    *,
    limits: ArchiveLimits,
) -> None:
    # size and ratio limits cover page entries only; others are never read
    if len(infos) > limits.max_entries:
        raise InvalidArchiveError(
            f"Archive has too many entries ({len(infos)}), limit is "
            f"{limits.max_entries}."
        )

    total_uncompressed_bytes = 0
    for info in page_infos:
        if info.file_size > limits.max_single_file_bytes:
            raise InvalidArchiveError(
                f"Archive entry '{info.filename}' exceeds max_single_file_bytes: "
                f"{info.file_size} > {limits.max_single_file_bytes}."
            )
        compression_ratio = info.file_size / max(info.compress_size, 1)
        if compression_ratio > limits.max_compression_ratio:
            raise InvalidArchiveError(
                f"Archive entry '{info.filename}' exceeds max_compression_ratio: "
                f"{compression_ratio:.2f} > {limits.max_compression_ratio:.2f}."
            )
        total_uncompressed_bytes += info.file_size

    if total_uncompressed_bytes > limits.max_total_uncompressed_bytes:
        raise InvalidArchiveError(
            "Archive uncompressed size exceeds allowed limit: "
            f"{total_uncompressed_bytes} > {limits.max_total_uncompressed_bytes}."
        )
