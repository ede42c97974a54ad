from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath


@dataclass(frozen=True, slots=True)
class PageImage:
    """One raster page taken from an inbound archive, in archive entry order."""

    source_name: str
    data: bytes

    @property
    def extension(self) -> str:
        return PurePosixPath(self.source_name).suffix.lower()

    @property
    def size_bytes(self) -> int:
        return len(self.data)
