"""Document store adapters.

The engine relies on three primitives only: a native atomic increment that
needs no prior read, single-document read-modify-write transactions with
conflict retry, and plain reads. MongoDB provides them in production; the
in-process store mirrors the same semantics for development and tests.
"""

from usage_guard.adapters.store.base import AbstractDocumentStore, TransactionFn
from usage_guard.adapters.store.factory import create_document_store
from usage_guard.adapters.store.memory import InMemoryDocumentStore
from usage_guard.adapters.store.mongo import MongoDocumentStore

__all__ = [
    "AbstractDocumentStore",
    "InMemoryDocumentStore",
    "MongoDocumentStore",
    "TransactionFn",
    "create_document_store",
]
