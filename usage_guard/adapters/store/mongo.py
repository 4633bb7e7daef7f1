"""MongoDB document store (pymongo async API).

- ``increment`` is a single upsert with ``$inc``; no prior read.
- ``transact`` is compare-and-swap on the ``_rev`` field with bounded,
  jittered retries. Single-document updates are atomic in MongoDB, so a
  commit either sees the revision it read or matches nothing. Transactions
  on one document are queued within the process, so retries only absorb
  writers from other instances.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Mapping, TypeVar

from pymongo import AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from usage_guard.adapters.store.base import (
    AbstractDocumentStore,
    Document,
    DocumentLocks,
    T,
    TransactionFn,
    strip_internal,
)
from usage_guard.core.errors import StoreUnavailableError, TransactionConflictError

logger = logging.getLogger(__name__)

R = TypeVar("R")


class MongoDocumentStore(AbstractDocumentStore):
    """Store backed by one MongoDB database."""

    def __init__(
        self,
        client: AsyncMongoClient,
        *,
        database: str,
        timeout_ms: int = 2_000,
        max_attempts: int = 8,
    ) -> None:
        """Initialize the store.

        Args:
            client: Shared async client (connection pool).
            database: Database holding all engine collections.
            timeout_ms: Upper bound for a single store call.
            max_attempts: Transaction attempts before reporting a conflict.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self._db = client[database]
        self._timeout_seconds = timeout_ms / 1000
        self._max_attempts = max_attempts
        self._tx_locks = DocumentLocks()

    @classmethod
    def from_uri(
        cls,
        uri: str,
        *,
        database: str,
        timeout_ms: int = 2_000,
        max_attempts: int = 8,
    ) -> "MongoDocumentStore":
        client: AsyncMongoClient = AsyncMongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
            retryWrites=True,
            maxPoolSize=20,
        )
        return cls(client, database=database, timeout_ms=timeout_ms, max_attempts=max_attempts)

    async def _guard(self, operation: str, awaitable: Awaitable[R]) -> R:
        """Await a driver call, mapping driver errors and timeouts to StoreUnavailableError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout_seconds)
        except DuplicateKeyError:
            raise
        except (PyMongoError, asyncio.TimeoutError) as exc:
            logger.warning(
                "store.call_failed",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Document store is unavailable",
                details={"backend": "mongodb", "hint": operation},
            ) from exc

    async def get(self, collection: str, doc_id: str) -> Document | None:
        doc = await self._guard("get", self._db[collection].find_one({"_id": doc_id}))
        return strip_internal(doc)

    async def increment(
        self,
        collection: str,
        doc_id: str,
        increments: Mapping[str, int],
        *,
        set_fields: Mapping[str, Any] | None = None,
        on_insert: Mapping[str, Any] | None = None,
    ) -> None:
        update: dict[str, Any] = {"$inc": {**increments, "_rev": 1}}
        if set_fields:
            update["$set"] = dict(set_fields)
        if on_insert:
            update["$setOnInsert"] = dict(on_insert)
        try:
            await self._guard(
                "increment",
                self._db[collection].update_one({"_id": doc_id}, update, upsert=True),
            )
        except DuplicateKeyError:
            # Lost an upsert race; the document exists now, so a plain $inc applies.
            await self._guard(
                "increment",
                self._db[collection].update_one({"_id": doc_id}, update),
            )

    async def ensure(self, collection: str, doc_id: str, defaults: Mapping[str, Any]) -> None:
        try:
            await self._guard(
                "ensure",
                self._db[collection].update_one(
                    {"_id": doc_id},
                    {"$setOnInsert": {**defaults, "_rev": 1}},
                    upsert=True,
                ),
            )
        except DuplicateKeyError:
            pass

    async def _commit(
        self,
        collection: str,
        doc_id: str,
        rev: int | None,
        updates: Mapping[str, Any],
    ) -> bool:
        coll = self._db[collection]
        if rev is None:
            try:
                await self._guard("transact", coll.insert_one({"_id": doc_id, "_rev": 1, **updates}))
            except DuplicateKeyError:
                return False
            return True

        rev_filter: Any = rev if rev else {"$exists": False}
        result = await self._guard(
            "transact",
            coll.update_one(
                {"_id": doc_id, "_rev": rev_filter},
                {"$set": dict(updates), "$inc": {"_rev": 1}},
            ),
        )
        return result.matched_count == 1

    async def transact(self, collection: str, doc_id: str, fn: TransactionFn[T]) -> T:
        async with self._tx_locks.hold(collection, doc_id):
            return await self._transact(collection, doc_id, fn)

    async def _transact(self, collection: str, doc_id: str, fn: TransactionFn[T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            doc = await self._guard("transact", self._db[collection].find_one({"_id": doc_id}))
            rev = None if doc is None else int(doc.get("_rev", 0))
            updates, result = fn(strip_internal(doc))
            if not updates:
                return result
            if await self._commit(collection, doc_id, rev, updates):
                return result

            logger.debug(
                "store.transaction_conflict",
                extra={"collection": collection, "attempt": attempt},
            )
            await asyncio.sleep(random.uniform(0, 0.005 * attempt))

        raise TransactionConflictError(
            code="transaction_conflict",
            message="Too many concurrent updates; try again",
            details={"backend": "mongodb", "attempts": self._max_attempts},
        )

    async def aclose(self) -> None:
        await self._client.close()
