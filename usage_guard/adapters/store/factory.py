"""Factory for the configured document store."""

import logging

from usage_guard.adapters.store.base import AbstractDocumentStore
from usage_guard.adapters.store.memory import InMemoryDocumentStore
from usage_guard.adapters.store.mongo import MongoDocumentStore
from usage_guard.core.config import MongoSettings

logger = logging.getLogger(__name__)


def create_document_store(mongo_settings: MongoSettings) -> AbstractDocumentStore:
    """Instantiate the document store from configuration.

    Falls back to the in-process store when MONGODB_URI is not set. That
    store is per-instance and forgets everything on restart, so it is only
    suitable for local development.

    Returns:
        AbstractDocumentStore: Configured store instance.
    """
    if not mongo_settings.uri:
        logger.warning(
            "store.durable_disabled",
            extra={"reason": "mongodb_uri_not_configured", "backend": "memory"},
        )
        return InMemoryDocumentStore(max_attempts=mongo_settings.transaction_max_attempts)

    return MongoDocumentStore.from_uri(
        mongo_settings.uri,
        database=mongo_settings.database,
        timeout_ms=mongo_settings.timeout_ms,
        max_attempts=mongo_settings.transaction_max_attempts,
    )
