from __future__ import annotations

import io
import threading
from typing import BinaryIO, Iterable, Union
from zipfile import ZIP_DEFLATED, ZIP_STORED, ZipFile

from PIL import Image


def make_tiff(width: int, height: int, *, seed: int = 0) -> bytes:
    image = Image.new("RGB", (width, height))
    image.putdata(
        [
            ((x * 7 + seed) % 256, (y * 13 + seed) % 256, (x + y + seed) % 256)
            for y in range(height)
            for x in range(width)
        ]
    )
    buffer = io.BytesIO()
    image.save(buffer, format="TIFF")
    return buffer.getvalue()


def make_zip(
    entries: Iterable[tuple[str, bytes]], *, compression: int = ZIP_STORED
) -> bytes:
    buffer = io.BytesIO()
    with ZipFile(buffer, mode="w", compression=compression) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


def make_page_archive(sizes: Iterable[tuple[int, int]]) -> bytes:
    return make_zip(
        (f"scan_{index}.tif", make_tiff(width, height, seed=index))
        for index, (width, height) in enumerate(sizes, start=1)
    )


class FakeSource:
    def __init__(self, payloads: dict[str, bytes]) -> None:
        self.payloads = payloads
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch_archive(self, doc_id: str) -> bytes:
        with self._lock:
            self.calls.append(doc_id)
        return self.payloads[doc_id]


class RecordingTarget:
    """In-memory remote target that can be told to fail on given paths."""

    def __init__(self, *, fail_on: Iterable[str] = ()) -> None:
        self.directories: list[str] = []
        self.objects: dict[str, bytes] = {}
        self.fail_on = set(fail_on)
        self._lock = threading.Lock()

    def ensure_directory(self, path: str) -> None:
        with self._lock:
            self.directories.append(path)

    def write_object(self, path: str, source: Union[bytes, BinaryIO]) -> None:
        if any(path.endswith(suffix) for suffix in self.fail_on):
            raise ConnectionError(f"remote write refused: {path}")
        data = source if isinstance(source, bytes) else source.read()
        with self._lock:
            self.objects[path] = data


def make_blank_tiff(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("L", (width, height), 255).save(buffer, format="TIFF")
    return buffer.getvalue()


def make_deflated_zip(entries: Iterable[tuple[str, bytes]]) -> bytes:
    return make_zip(entries, compression=ZIP_DEFLATED)


def make_rgba_tiff(width: int, height: int) -> bytes:
    image = Image.new("RGBA", (width, height))
    image.putdata(
        [
            (200, (x * 9) % 256, (y * 5) % 256, (x * 17 + y * 3) % 256)
            for y in range(height)
            for x in range(width)
        ]
    )
    buffer = io.BytesIO()
    image.save(buffer, format="TIFF")
    return buffer.getvalue()
