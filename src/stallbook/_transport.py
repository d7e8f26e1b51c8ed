"""HTTP transport for the Cloud Firestore REST API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from stallbook._redact import redact_for_log, redact_url
from stallbook.config import FirestoreConfig
from stallbook.exceptions import BackendUnavailableError, TransactionContentionError

_logger = logging.getLogger(__name__)

_PAGE_SIZE = 300


class FirestoreApi(Protocol):
    """Structural interface used by ``FirestoreStore``.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`FirestoreTransport`) concrete.
    """

    def document_name(self, key: str) -> str:
        ...

    async def begin_transaction(self) -> str:
        ...

    async def get_document(self, key: str, *, transaction: str | None = None) -> dict[str, Any] | None:
        ...

    async def commit(self, transaction: str, writes: list[dict[str, Any]]) -> dict[str, Any]:
        ...

    async def rollback(self, transaction: str) -> None:
        ...

    async def list_documents(self) -> list[dict[str, Any]]:
        ...


def _error_message(text: str) -> str:
    """Pull ``error.status: error.message`` out of a Google API error body."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return text[:200]
    status = error.get("status") or error.get("code") or ""
    message = error.get("message") or ""
    return f"{status}: {message}".strip(": ")


class FirestoreTransport:
    """Thin REST client: one method per Firestore call the store needs."""

    def __init__(self, config: FirestoreConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def document_name(self, key: str) -> str:
        """Full resource name of the document for stall *key*."""
        return f"{self._config.documents_path}/{self._config.collection}/{key}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> dict[str, Any] | None:
        """Send one request and return the decoded JSON object.

        Returns ``None`` for HTTP 404 when *allow_missing* is set.  Raises
        :class:`TransactionContentionError` for HTTP 409 (``ABORTED``) and
        :class:`BackendUnavailableError` for every other failure.
        """
        url = f"{self._config.base_url.rstrip('/')}/{path}"
        query: dict[str, str] = dict(params or {})
        if self._config.api_key:
            query["key"] = self._config.api_key
        endpoint = path.removeprefix(self._config.documents_path).lstrip("/") or path

        _logger.debug(
            "%s %s params=%s body=%s",
            method,
            redact_url(url),
            redact_for_log(query),
            redact_for_log(json_body),
        )

        try:
            async with self._http.request(
                method,
                url,
                params=query,
                json=json_body,
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise BackendUnavailableError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc
        except TimeoutError as exc:
            raise BackendUnavailableError(
                f"Request to {endpoint} timed out after {self._config.request_timeout}s",
                endpoint=endpoint,
            ) from exc

        if status == 404 and allow_missing:
            return None
        if status == 409:
            raise TransactionContentionError(
                f"Transaction aborted by {endpoint}: {_error_message(text)}",
                status_code=status,
                endpoint=endpoint,
            )
        if not 200 <= status < 300:
            raise BackendUnavailableError(
                f"HTTP {status} from {endpoint}: {_error_message(text)}",
                status_code=status,
                endpoint=endpoint,
            )

        if not text.strip():
            return {}
        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise BackendUnavailableError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc
        if not isinstance(body, dict):
            raise BackendUnavailableError(f"Unexpected response shape from {endpoint}", endpoint=endpoint)
        return body

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        body = await self.request(method, path, **kwargs)
        return body if body is not None else {}

    async def begin_transaction(self) -> str:
        body = await self._request(
            "POST",
            f"{self._config.documents_path}:beginTransaction",
            json_body={"options": {"readWrite": {}}},
        )
        transaction = body.get("transaction")
        if not isinstance(transaction, str) or not transaction:
            raise BackendUnavailableError(
                "beginTransaction response missing transaction id",
                endpoint=":beginTransaction",
            )
        return transaction

    async def get_document(self, key: str, *, transaction: str | None = None) -> dict[str, Any] | None:
        params = {"transaction": transaction} if transaction else None
        return await self.request("GET", self.document_name(key), params=params, allow_missing=True)

    async def commit(self, transaction: str, writes: list[dict[str, Any]]) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"{self._config.documents_path}:commit",
            json_body={"writes": writes, "transaction": transaction},
        )

    async def rollback(self, transaction: str) -> None:
        await self._request(
            "POST",
            f"{self._config.documents_path}:rollback",
            json_body={"transaction": transaction},
        )

    async def list_documents(self) -> list[dict[str, Any]]:
        """Every document of the booking collection, across pages."""
        documents: list[dict[str, Any]] = []
        page_token: str | None = None
        path = f"{self._config.documents_path}/{self._config.collection}"
        while True:
            params = {"pageSize": str(_PAGE_SIZE)}
            if page_token:
                params["pageToken"] = page_token
            body = await self._request("GET", path, params=params, allow_missing=True)
            page = body.get("documents") or []
            documents.extend(doc for doc in page if isinstance(doc, dict))
            page_token = body.get("nextPageToken")
            if not page_token:
                return documents
