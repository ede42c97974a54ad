from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence
from urllib.parse import quote

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from archive_migrator.utils.error_taxonomy import (
    FetchError,
    extract_http_status_code,
    is_retryable_status_code,
)

logger = logging.getLogger("archive_migrator")


class ArchiveSource(Protocol):
    def fetch_archive(self, doc_id: str) -> bytes: ...


class DocumentInventory(Protocol):
    def list_pending_documents(self) -> Sequence[str]: ...


@dataclass(frozen=True, slots=True)
class HttpSourceConfig:
    base_url: str
    api_token: str | None = None
    payload_path: str = "/documents/{doc_id}/payload"
    inventory_path: str = "/documents/pending"
    timeout_seconds: float = 60.0
    max_attempts: int = 4
    retry_backoff_seconds: float = 2.0
    user_agent: str = "ArchiveMigrator/0.1"


def should_retry_http_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status_code = extract_http_status_code(error)
        return status_code is not None and is_retryable_status_code(status_code)
    return False


def build_client(
    config: HttpSourceConfig,
    *,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    headers = {"User-Agent": config.user_agent}
    if config.api_token:
        headers["Authorization"] = f"Bearer {config.api_token}"
    return httpx.Client(
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout_seconds,
        follow_redirects=True,
        transport=transport,
    )


class HttpArchiveSource:
    """Source REST service: archive payloads and the pending-document listing.

    Transient failures (timeouts, network errors, 429 and 5xx) are retried
    here with exponential backoff; whatever still fails is raised as
    ``FetchError``.
    """

    def __init__(
        self,
        config: HttpSourceConfig,
        *,
        client: httpx.Client | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config
        self._client = client or build_client(config)
        self._sleep_fn = sleep_fn

    def fetch_archive(self, doc_id: str) -> bytes:
        path = self.config.payload_path.format(doc_id=quote(doc_id, safe=""))
        response = self._get(path, what=f"archive for {doc_id}")
        return response.content

    def list_pending_documents(self) -> list[str]:
        response = self._get(self.config.inventory_path, what="pending documents")
        try:
            payload = response.json()
        except ValueError as error:
            raise FetchError(f"Inventory response is not JSON: {error}") from error
        return parse_inventory_payload(payload)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, *, what: str) -> httpx.Response:
        retrying_kwargs: dict[str, Any] = {
            "wait": wait_exponential(multiplier=self.config.retry_backoff_seconds),
            "stop": stop_after_attempt(max(self.config.max_attempts, 1)),
            "retry": retry_if_exception(should_retry_http_error),
            "before_sleep": self._log_retry,
            "reraise": True,
        }
        if self._sleep_fn is not None:
            retrying_kwargs["sleep"] = self._sleep_fn

        try:
            for attempt in Retrying(**retrying_kwargs):
                with attempt:
                    response = self._client.get(path)
                    response.raise_for_status()
        except httpx.HTTPStatusError as error:
            raise FetchError(
                f"Source returned HTTP {error.response.status_code} for {what}"
            ) from error
        except httpx.HTTPError as error:
            raise FetchError(f"Source request failed for {what}: {error}") from error
        return response

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.warning(
            f"Retrying source request after attempt {retry_state.attempt_number}: {error}",
            extra={"stage": "fetching"},
        )


def parse_inventory_payload(payload: Any) -> list[str]:
    if isinstance(payload, dict):
        payload = payload.get("items", payload.get("documents"))
    if not isinstance(payload, list):
        raise FetchError("Inventory response must be a list of document ids")

    doc_ids: list[str] = []
    for item in payload:
        if isinstance(item, dict):
            item = item.get("id")
        if item is None:
            continue
        value = str(item).strip()
        if value:
            doc_ids.append(value)
    return dedupe_preserving_order(doc_ids)


def dedupe_preserving_order(doc_ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for doc_id in doc_ids:
        if doc_id in seen:
            continue
        seen.add(doc_id)
        unique.append(doc_id)
    return unique
