from __future__ import annotations

import hashlib
from pathlib import Path

DIGEST_ALGORITHM = "sha256"
_CHUNK_SIZE = 1024 * 1024


def digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def digest_file(path: Path | str) -> str:
    hasher = hashlib.sha256()
    with Path(path).open("rb") as source:
        for chunk in iter(lambda: source.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
