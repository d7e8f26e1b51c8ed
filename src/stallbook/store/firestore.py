"""Cloud Firestore store.

Transactions map onto Firestore's REST transaction calls; the backend's
isolation guarantees at most one winner among racing clients.  Live
updates come from a single background task that lists the collection
every ``poll_interval`` seconds, and right away after a local commit or a
new subscription.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import aiohttp

from stallbook._transport import FirestoreApi, FirestoreTransport
from stallbook.config import FirestoreConfig
from stallbook.exceptions import (
    BackendUnavailableError,
    ConflictAborted,
    StallBookError,
    TransactionContentionError,
)
from stallbook.models.booking import BookingRecord, Snapshot, stall_key
from stallbook.store._codec import decode_documents, decode_record, encode_write
from stallbook.store.base import (
    BufferedTransaction,
    Operation,
    SnapshotCallback,
    SnapshotFanout,
    T,
    Unsubscribe,
    classify_operation_error,
)

_logger = logging.getLogger(__name__)


class _FirestoreTransaction(BufferedTransaction):
    def __init__(self, api: FirestoreApi, transaction: str) -> None:
        super().__init__()
        self._api = api
        self._transaction = transaction

    async def _fetch(self, key: str) -> BookingRecord | None:
        document = await self._api.get_document(key, transaction=self._transaction)
        if document is None:
            return None
        try:
            return decode_record(document)
        except ValueError as exc:
            raise BackendUnavailableError(f"Malformed booking document for stall {key}: {exc}") from exc


class FirestoreStore:
    """Store backed by a Cloud Firestore collection.

    Usage::

        async with FirestoreStore(config) as store:
            await store.transact(5, operation)
    """

    def __init__(
        self,
        config: FirestoreConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: FirestoreApi | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: FirestoreApi | None = transport
        self._injected_transport = transport is not None
        self._fanout = SnapshotFanout()
        self._awaiting_first: list[SnapshotCallback] = []
        self._snapshot: Snapshot | None = None
        self._poller: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FirestoreStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open(self) -> None:
        if self._transport is not None:
            return
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = FirestoreTransport(self._config, self._http_session)
        _logger.debug(
            "Firestore store bound to project=%s collection=%s",
            self._config.project_id,
            self._config.collection,
        )

    async def close(self) -> None:
        await self._stop_poller()
        self._awaiting_first.clear()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._injected_transport:
            self._transport = None

    def _require_transport(self) -> FirestoreApi:
        if self._transport is None:
            raise StallBookError("Store not opened. Use 'async with FirestoreStore(...) as store:'")
        return self._transport

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Register an observer.

        The first delivery is immediate when a snapshot is cached, otherwise
        it follows the next fetch.  Must be called from the event loop.
        """
        self._require_transport()
        remove = self._fanout.add(on_snapshot)
        if self._snapshot is not None:
            self._fanout.deliver(on_snapshot, self._snapshot)
        else:
            self._awaiting_first.append(on_snapshot)
        self._ensure_poller()
        self._wake.set()

        def unsubscribe() -> None:
            remove()
            self._awaiting_first = [cb for cb in self._awaiting_first if cb is not on_snapshot]
            if not len(self._fanout):
                self._cancel_poller()

        return unsubscribe

    async def refresh(self) -> Snapshot:
        """Fetch the collection now and deliver the result if it changed."""
        documents = await self._require_transport().list_documents()
        snapshot = Snapshot(decode_documents(documents))
        changed = self._snapshot is None or snapshot != self._snapshot
        self._snapshot = snapshot
        waiting, self._awaiting_first = self._awaiting_first, []
        if changed:
            self._fanout.publish(snapshot)
        else:
            for callback in waiting:
                if self._fanout.is_active(callback):
                    self._fanout.deliver(callback, snapshot)
        return snapshot

    def _ensure_poller(self) -> None:
        if self._poller is not None and not self._poller.done():
            return
        self._poller = asyncio.get_running_loop().create_task(self._poll_loop())

    def _cancel_poller(self) -> None:
        poller = self._poller
        self._poller = None
        self._snapshot = None
        if poller is not None and not poller.done():
            poller.cancel()

    async def _stop_poller(self) -> None:
        poller = self._poller
        self._cancel_poller()
        if poller is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await poller

    async def _poll_loop(self) -> None:
        while True:
            self._wake.clear()
            try:
                await self.refresh()
            except StallBookError:
                _logger.warning("Snapshot poll of %s failed", self._config.collection, exc_info=True)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._config.poll_interval)
            except TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transact(self, stall_id: int | str, operation: Operation[T]) -> T:
        """Run *operation* in a Firestore transaction.

        Reads or commits rejected with ``ABORTED`` are retried from the
        start, up to ``max_attempts`` runs, like the official SDKs do.
        """
        key = stall_key(stall_id)
        api = self._require_transport()
        attempts = max(1, self._config.max_attempts)
        attempt = 0
        while True:
            attempt += 1
            transaction = await api.begin_transaction()
            tx = _FirestoreTransaction(api, transaction)
            try:
                result = await operation(tx)
            except Exception as exc:
                await self._rollback(api, transaction)
                if isinstance(exc, TransactionContentionError) and attempt < attempts:
                    _logger.debug("Read contention on stall %s (attempt %d/%d), retrying", key, attempt, attempts)
                    continue
                error = classify_operation_error(exc, key)
                if isinstance(error, ConflictAborted):
                    _logger.debug("Transaction on stall %s aborted: %s", key, error)
                if error is exc:
                    raise
                raise error from exc

            writes = [encode_write(api.document_name(k), value) for k, value in tx.writes.items()]
            try:
                await api.commit(transaction, writes)
            except TransactionContentionError:
                if attempt >= attempts:
                    raise
                _logger.debug("Commit contention on stall %s (attempt %d/%d), retrying", key, attempt, attempts)
                continue

            if writes:
                self._wake.set()
            return result

    async def _rollback(self, api: FirestoreApi, transaction: str) -> None:
        try:
            await api.rollback(transaction)
        except BackendUnavailableError:
            _logger.debug("Rollback of transaction failed", exc_info=True)
