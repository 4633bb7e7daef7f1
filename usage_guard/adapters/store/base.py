"""Document store interface."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Mapping, TypeVar
from urllib.parse import quote

T = TypeVar("T")

Document = dict[str, Any]

# Receives the current document (None when absent) and returns the fields to
# write (None or {} for no write) plus the value handed back to the caller.
# Raising aborts the transaction without writing.
TransactionFn = Callable[[Document | None], tuple[Mapping[str, Any] | None, T]]

# Bookkeeping fields never exposed in snapshots
INTERNAL_FIELDS = ("_id", "_rev")


def strip_internal(doc: Mapping[str, Any] | None) -> Document | None:
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k not in INTERNAL_FIELDS}


def compound_id(*parts: str) -> str:
    """Join key parts into a document id no other tuple of parts maps to.

    Parts are percent-encoded, so the ``:`` separator never occurs inside one.
    """
    return ":".join(quote(part, safe="") for part in parts)


class DocumentLocks:
    """Per-document asyncio locks, dropped once no task holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, collection: str, doc_id: str) -> AsyncIterator[None]:
        key = (collection, doc_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class AbstractDocumentStore(ABC):
    """Interface for the durable document store.

    Implementations raise ``StoreUnavailableError`` for backend failures so
    callers can apply their own fail-open / fail-closed policy.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Read a document (None when it does not exist)."""
        raise NotImplementedError

    @abstractmethod
    async def increment(
        self,
        collection: str,
        doc_id: str,
        increments: Mapping[str, int],
        *,
        set_fields: Mapping[str, Any] | None = None,
        on_insert: Mapping[str, Any] | None = None,
    ) -> None:
        """Atomically add ``increments`` to numeric fields, creating the document if needed.

        Args:
            collection: Collection name.
            doc_id: Document id.
            increments: Field -> amount; missing fields start at 0.
            set_fields: Fields overwritten on every call (e.g. timestamps).
            on_insert: Fields written only when the document is created.
        """
        raise NotImplementedError

    @abstractmethod
    async def ensure(self, collection: str, doc_id: str, defaults: Mapping[str, Any]) -> None:
        """Create the document with ``defaults`` unless it already exists."""
        raise NotImplementedError

    @abstractmethod
    async def transact(self, collection: str, doc_id: str, fn: TransactionFn[T]) -> T:
        """Run ``fn`` as a single-document read-modify-write transaction.

        Transactions on one document are serialized within the process, so
        the retry budget is spent only on writers outside it (other instances
        or plain increments). ``fn`` may still run more than once when such a
        writer wins; it must be free of side effects besides its return value.

        Raises:
            TransactionConflictError: Conflicts persisted past the retry budget.
            StoreUnavailableError: The backend failed.
        """
        raise NotImplementedError

    async def aclose(self) -> None:  # noqa: B027 - optional hook
        """Release backend resources."""
