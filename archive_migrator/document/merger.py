from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import fitz  # PyMuPDF
from PIL import Image

from archive_migrator.archive.types import PageImage
from archive_migrator.utils.error_taxonomy import (
    MergeError,
    UnsupportedImageFormatError,
)

logger = logging.getLogger("archive_migrator")

_ALPHA_MODES = frozenset({"RGBA", "RGBa", "LA", "La", "PA"})
_GREY_ALPHA_MODES = frozenset({"LA", "La"})
_KEYED_MODES = frozenset({"P", "L", "RGB"})


@dataclass(frozen=True, slots=True)
class MergedDocument:
    data: bytes
    page_sizes: tuple[tuple[int, int], ...]

    @property
    def page_count(self) -> int:
        return len(self.page_sizes)


def read_image_size(page: PageImage) -> tuple[int, int]:
    try:
        pixmap = fitz.Pixmap(page.data)
    except Exception as error:  # noqa: BLE001
        raise UnsupportedImageFormatError(
            f"Page '{page.source_name}' is not a decodable raster image: {error}"
        ) from error
    width, height = pixmap.width, pixmap.height
    if width <= 0 or height <= 0:
        raise UnsupportedImageFormatError(
            f"Page '{page.source_name}' has empty geometry {width}x{height}"
        )
    return width, height


def split_alpha(page: PageImage) -> tuple[bytes, bytes] | None:
    """Return PNG-encoded colour and alpha planes for pages with transparency.

    PyMuPDF premultiplies alpha when it embeds such an image directly, so the
    colour channels are stored separately and the alpha plane becomes a soft
    mask. Returns ``None`` for opaque pages and for payloads Pillow cannot open.
    """
    try:
        with Image.open(io.BytesIO(page.data)) as image:
            keyed = (
                image.mode in _KEYED_MODES and image.info.get("transparency") is not None
            )
            if image.mode not in _ALPHA_MODES and not keyed:
                return None
            grey = image.mode in _GREY_ALPHA_MODES or image.mode == "L"
            converted = image.convert("LA" if grey else "RGBA")
    except (OSError, ValueError):
        return None

    alpha = converted.getchannel("A")
    color = converted.convert("L" if grey else "RGB")
    return _to_png(color), _to_png(alpha)


def _to_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def merge_pages(pages: Sequence[PageImage]) -> MergedDocument:
    """Merge ``pages`` into a PDF, one page per image, in input order.

    Each PDF page measures exactly the source image's pixel width and height
    in points. Images are embedded through PyMuPDF's image insertion, which
    keeps JPEG streams as-is and stores every other raster losslessly with
    Flate compression.
    """
    if not pages:
        raise ValueError("At least one page is required")

    sizes: list[tuple[int, int]] = []
    document = fitz.open()
    try:
        for page in pages:
            width, height = read_image_size(page)
            pdf_page = document.new_page(width=width, height=height)
            try:
                split = split_alpha(page)
                if split is None:
                    pdf_page.insert_image(pdf_page.rect, stream=page.data)
                else:
                    color, alpha = split
                    pdf_page.insert_image(pdf_page.rect, stream=color, mask=alpha)
            except Exception as error:  # noqa: BLE001
                raise UnsupportedImageFormatError(
                    f"Page '{page.source_name}' could not be embedded: {error}"
                ) from error
            sizes.append((width, height))

        try:
            data = document.tobytes(garbage=3, deflate=True)
        except Exception as error:  # noqa: BLE001
            raise MergeError(f"Failed to serialize merged document: {error}") from error
    finally:
        document.close()

    logger.debug(
        "Merged document built",
        extra={"metrics": {"pages": len(sizes), "bytes": len(data)}},
    )
    return MergedDocument(data=data, page_sizes=tuple(sizes))


def write_merged_document(path: Path | str, pages: Sequence[PageImage]) -> MergedDocument:
    target = Path(path)
    merged = merge_pages(pages)
    try:
        target.write_bytes(merged.data)
    except OSError as error:
        raise MergeError(
            f"Failed to write merged document to {target}: {error}"
        ) from error
    return merged
