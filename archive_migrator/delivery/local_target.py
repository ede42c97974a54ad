from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath

from archive_migrator.delivery.base import ObjectSource


class LocalDirectoryTarget:
    """Remote target backed by a local (or mounted) directory tree.

    Remote paths are POSIX strings; absolute ones are rooted at ``root``.
    Objects are written to a sibling temp file and renamed into place so a
    reader never sees a half-written object.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def resolve(self, path: str) -> Path:
        relative = PurePosixPath(path.lstrip("/"))
        if ".." in relative.parts:
            raise ValueError(f"Path traversal attempt detected: {path}")
        resolved_root = self.root.resolve()
        target = (resolved_root / relative.as_posix()).resolve()
        try:
            target.relative_to(resolved_root)
        except ValueError as error:
            raise ValueError(f"Path traversal attempt detected: {path}") from error
        return target

    def ensure_directory(self, path: str) -> None:
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    def write_object(self, path: str, source: ObjectSource) -> None:
        target = self.resolve(path)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{target.name}-", suffix=".part", dir=target.parent
        )
        try:
            with os.fdopen(fd, "wb") as destination:
                if isinstance(source, (bytes, bytearray)):
                    destination.write(source)
                else:
                    shutil.copyfileobj(source, destination)
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def close(self) -> None:
        return None
