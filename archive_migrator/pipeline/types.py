from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

MigrationStatus = Literal["done", "failed"]


class Stage(str, Enum):
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PACKAGING = "packaging"
    MERGING = "merging"
    COMPOSING = "composing"
    UPLOADING = "uploading"
    CLEANING = "cleaning"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class MigrationResult:
    doc_id: str
    status: MigrationStatus
    stage: Stage
    remote_paths: tuple[str, ...] = ()
    partial_remote_paths: tuple[str, ...] = ()
    page_count: int | None = None
    custody_digest: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    attempts: int = 1
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "done"


@dataclass(frozen=True, slots=True)
class MigrationRunReport:
    run_id: str
    started_at: str
    finished_at: str
    results: tuple[MigrationResult, ...]
    cancelled: bool = False

    @property
    def succeeded_count(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.results) - self.succeeded_count

    @property
    def all_succeeded(self) -> bool:
        return self.failed_count == 0
