"""In-process document store with the same concurrency semantics as MongoDB.

Every document carries a revision number. Transactions on one document run
one at a time; each reads a snapshot, yields to the event loop, then commits
only if the revision is unchanged, retrying otherwise. Increments bump the
revision too, so a transaction never overwrites one.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from typing import Any, Mapping

from usage_guard.adapters.store.base import (
    AbstractDocumentStore,
    Document,
    DocumentLocks,
    T,
    TransactionFn,
    strip_internal,
)
from usage_guard.core.errors import TransactionConflictError

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(AbstractDocumentStore):
    """Dictionary-backed store for development and tests. Not durable."""

    def __init__(self, *, max_attempts: int = 8) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = threading.RLock()
        self._tx_locks = DocumentLocks()
        self._max_attempts = max_attempts

    def _docs(self, collection: str) -> dict[str, Document]:
        return self._collections.setdefault(collection, {})

    def _read(self, collection: str, doc_id: str) -> tuple[Document | None, int]:
        with self._lock:
            doc = self._docs(collection).get(doc_id)
            if doc is None:
                return None, 0
            return copy.deepcopy(doc), doc["_rev"]

    async def get(self, collection: str, doc_id: str) -> Document | None:
        doc, _ = self._read(collection, doc_id)
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
        with self._lock:
            docs = self._docs(collection)
            doc = docs.get(doc_id)
            if doc is None:
                doc = {"_id": doc_id, "_rev": 0, **dict(on_insert or {})}
                docs[doc_id] = doc
            for field, amount in increments.items():
                doc[field] = doc.get(field, 0) + amount
            doc.update(set_fields or {})
            doc["_rev"] += 1

    async def ensure(self, collection: str, doc_id: str, defaults: Mapping[str, Any]) -> None:
        with self._lock:
            docs = self._docs(collection)
            if doc_id not in docs:
                docs[doc_id] = {"_id": doc_id, "_rev": 1, **copy.deepcopy(dict(defaults))}

    async def transact(self, collection: str, doc_id: str, fn: TransactionFn[T]) -> T:
        async with self._tx_locks.hold(collection, doc_id):
            return await self._transact(collection, doc_id, fn)

    async def _transact(self, collection: str, doc_id: str, fn: TransactionFn[T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            snapshot, rev = self._read(collection, doc_id)
            # Plain increments may land here, where a network round-trip would sit.
            await asyncio.sleep(0)
            updates, result = fn(strip_internal(snapshot))
            if not updates:
                return result

            with self._lock:
                docs = self._docs(collection)
                current = docs.get(doc_id)
                current_rev = current["_rev"] if current is not None else 0
                if current_rev == rev:
                    if current is None:
                        current = {"_id": doc_id, "_rev": 0}
                        docs[doc_id] = current
                    current.update(copy.deepcopy(dict(updates)))
                    current["_rev"] = rev + 1
                    return result

            logger.debug(
                "store.transaction_conflict",
                extra={"collection": collection, "attempt": attempt},
            )

        raise TransactionConflictError(
            code="transaction_conflict",
            message="Too many concurrent updates; try again",
            details={"backend": "memory", "attempts": self._max_attempts},
        )
