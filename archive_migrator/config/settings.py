from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from archive_migrator.archive.reader import ArchiveLimits
from archive_migrator.clients.source import HttpSourceConfig
from archive_migrator.delivery.sftp_target import SftpConfig


class Settings(BaseSettings):
    """Migration settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MIGRATOR_",
        extra="ignore",
    )

    environment: str = "local"

    source_base_url: str = "http://localhost:8081"
    source_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MIGRATOR_SOURCE_API_TOKEN", "SOURCE_API_TOKEN"),
    )
    source_payload_path: str = "/documents/{doc_id}/payload"
    source_inventory_path: str = "/documents/pending"
    source_timeout_seconds: float = Field(default=60.0, gt=0)
    source_max_attempts: int = Field(default=4, ge=1)
    source_retry_backoff_seconds: float = Field(default=2.0, ge=0)

    inventory_file: Path | None = None

    target_kind: Literal["sftp", "local"] = "sftp"
    target_remote_directory: str = "/incoming"
    target_local_root: Path = Path("data/remote")
    sftp_host: str = "localhost"
    sftp_port: int = Field(default=22, ge=1, le=65535)
    sftp_username: str = "migration"
    sftp_password: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MIGRATOR_SFTP_PASSWORD", "SFTP_PASSWORD"),
    )
    sftp_private_key_path: Path | None = None
    sftp_known_hosts_path: Path | None = None
    sftp_timeout_seconds: float = Field(default=30.0, gt=0)
    sftp_pool_size: int = Field(default=10, ge=1)

    concurrency: int = Field(default=4, ge=1)
    max_document_attempts: int = Field(default=1, ge=1)
    retry_backoff_seconds: float = Field(default=5.0, ge=0)
    parallel_artifact_build: bool = True
    temp_dir: Path | None = None
    page_suffixes: tuple[str, ...] = (".tif", ".tiff")

    archive_max_entries: int = Field(default=10_000, ge=1)
    archive_max_total_uncompressed_bytes: int = Field(
        default=2 * 1024 * 1024 * 1024, ge=1
    )
    archive_max_single_file_bytes: int = Field(default=512 * 1024 * 1024, ge=1)
    archive_max_compression_ratio: float = Field(default=2000.0, ge=1.0)

    report_dir: Path = Path("data/reports")
    log_file: Path | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("page_suffixes")
    @classmethod
    def _normalize_page_suffixes(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        normalized = tuple(
            item if item.startswith(".") else f".{item}"
            for item in (raw.strip().lower() for raw in value)
            if item
        )
        if not normalized:
            raise ValueError("page_suffixes must contain at least one suffix")
        return normalized

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_report_dir(self) -> Path:
        return self._resolve_path(self.report_dir)

    @property
    def resolved_target_local_root(self) -> Path:
        return self._resolve_path(self.target_local_root)

    @property
    def archive_limits(self) -> ArchiveLimits:
        return ArchiveLimits(
            max_entries=self.archive_max_entries,
            max_total_uncompressed_bytes=self.archive_max_total_uncompressed_bytes,
            max_single_file_bytes=self.archive_max_single_file_bytes,
            max_compression_ratio=self.archive_max_compression_ratio,
        )

    @property
    def http_source_config(self) -> HttpSourceConfig:
        return HttpSourceConfig(
            base_url=self.source_base_url,
            api_token=self.source_api_token,
            payload_path=self.source_payload_path,
            inventory_path=self.source_inventory_path,
            timeout_seconds=self.source_timeout_seconds,
            max_attempts=self.source_max_attempts,
            retry_backoff_seconds=self.source_retry_backoff_seconds,
        )

    @property
    def sftp_config(self) -> SftpConfig:
        return SftpConfig(
            host=self.sftp_host,
            port=self.sftp_port,
            username=self.sftp_username,
            password=self.sftp_password,
            private_key_path=(
                str(self.sftp_private_key_path) if self.sftp_private_key_path else None
            ),
            known_hosts_path=(
                str(self.sftp_known_hosts_path) if self.sftp_known_hosts_path else None
            ),
            timeout_seconds=self.sftp_timeout_seconds,
            pool_size=self.sftp_pool_size,
        )

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
